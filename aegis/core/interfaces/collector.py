from abc import ABC, abstractmethod
from typing import Any


class IMetricsCollector(ABC):
    """Interface for per-tick metric collectors"""
    @abstractmethod
    def collect(self) -> Any:
        """Collect one reading; must not raise"""
        pass
