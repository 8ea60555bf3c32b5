from __future__ import annotations

import logging
from typing import Dict

from ledger_tracker.config import DEFAULT_CONFIG
from ledger_tracker.core.validation import require_user
from ledger_tracker.database import LedgerStore

logger = logging.getLogger(__name__)


class LedgerSession:
    """The active user's view of a :class:`LedgerStore`.

    Every ledger command takes a session rather than reading a global
    "current user". A session without a user raises ``NotAuthenticated``
    from any operation that touches data.
    """

    def __init__(
        self,
        store: LedgerStore,
        user_id: str | None = None,
        config: Dict[str, object] | None = None,
    ):
        self.store = store
        self._user_id = user_id or None
        self.config = config or DEFAULT_CONFIG

    @property
    def user_id(self) -> str:
        return require_user(self._user_id)

    @property
    def is_authenticated(self) -> bool:
        return bool(self._user_id)

    def set_user(self, user_id: str | None) -> None:
        """Switch the active user, or sign out with ``None``."""
        self._user_id = user_id or None
        logger.debug("Active user set to %r", self._user_id)

    @property
    def reverse_goal_on_delete(self) -> bool:
        ledger_cfg = self.config.get("ledger") or {}
        return bool(ledger_cfg.get("reverse_goal_on_delete", True))

    def connect(self):
        return self.store.connect()
