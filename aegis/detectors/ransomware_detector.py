# aegis/detectors/ransomware_detector.py
import logging

from aegis.config.settings import repair_score_thresholds
from aegis.config.thresholds import SystemThresholds
from aegis.core.models.data_models import AnomalyResult, ClassifierResult, Verdict
from aegis.utils.numeric import clamp01


class RansomwareClassifier:
    """Turns an anomaly result into a weighted ransomware score and verdict"""

    def __init__(
        self,
        suspicious_threshold: float = SystemThresholds.SUSPICIOUS_SCORE,
        ransomware_threshold: float = SystemThresholds.RANSOMWARE_SCORE
    ):
        self.suspicious_threshold, self.ransomware_threshold = repair_score_thresholds(
            suspicious_threshold, ransomware_threshold
        )
        self.flag_weights = dict(SystemThresholds.FLAG_WEIGHTS)
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, score_thresholds) -> 'RansomwareClassifier':
        if score_thresholds is None:
            return cls()
        return cls(score_thresholds.suspicious, score_thresholds.ransomware)

    def score(self, anomaly: AnomalyResult) -> float:
        score = 0.5 * anomaly.anomaly_score
        for flag, weight in self.flag_weights.items():
            if anomaly.has_flag(flag):
                score += weight
        return clamp01(score)

    def verdict_for(self, score: float) -> Verdict:
        if score >= self.ransomware_threshold:
            return Verdict.RANSOMWARE
        if score >= self.suspicious_threshold:
            return Verdict.SUSPICIOUS
        return Verdict.SAFE

    def classify(self, anomaly: AnomalyResult) -> ClassifierResult:
        if anomaly is None:
            return ClassifierResult(ransomware_score=0.0, verdict=Verdict.SAFE, confidence=0.0)

        score = self.score(anomaly)
        verdict = self.verdict_for(score)
        # lowest at the 0.5 midpoint, highest at either extreme
        confidence = clamp01(2.0 * abs(score - 0.5))

        if verdict is not Verdict.SAFE:
            self.logger.warning(
                f"Verdict {verdict.value}: score={score:.3f} confidence={confidence:.3f} "
                f"flags={list(anomaly.flags)}"
            )
        return ClassifierResult(ransomware_score=score, verdict=verdict, confidence=confidence)
