class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class NotAuthenticated(LedgerError):
    """A mutation or query was attempted without an active user."""

    def __init__(self, message: str = "No user logged in"):
        super().__init__(message)


class NotFound(LedgerError):
    """An update referenced an identity that does not exist for the user."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ValidationFailure(LedgerError):
    """Input rejected at a command boundary; nothing was written."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


class DanglingReference(LedgerError):
    """A transaction points at a savings goal that no longer exists.

    The linker tolerates this and only logs it; the class exists so callers
    that want strict checking can raise it themselves.
    """

    def __init__(self, goal_id: int):
        super().__init__(f"Savings goal {goal_id} does not exist")
        self.goal_id = goal_id
