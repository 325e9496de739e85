from abc import ABC, abstractmethod

from aegis.core.models.data_models import AnomalyResult, TelemetrySample


class IAnalyzer(ABC):
    """Interface for baseline-driven anomaly analysis"""
    @abstractmethod
    def analyze(self, sample: TelemetrySample, baseline) -> AnomalyResult:
        """Score a sample against a baseline"""
        pass
