from abc import ABC, abstractmethod


class BaseOutput(ABC):
    @abstractmethod
    def write(self, snapshot, user_id):
        """Write a read-only ledger snapshot; return the output path."""
        pass
