from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class IStorage(ABC):
    """Interface for baseline persistence"""

    @abstractmethod
    def save_baseline(self, record: Dict[str, Any]) -> None:
        """Persist a baseline record"""
        pass

    @abstractmethod
    def load_baseline(self) -> Optional[Dict[str, Any]]:
        """Load the persisted baseline record, None if nothing was saved yet"""
        pass
