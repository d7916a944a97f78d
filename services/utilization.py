"""Plant Maintenance — Utilization Model.

Utilization is the ratio of a machine's stroke count to its configured
utilization limit. Watermarks are inclusive: a ratio equal to a
watermark has crossed it.

Bands (monitor card colours):
    normal    ratio < elevated_band (0.85)
    elevated  elevated_band <= ratio < warning (0.95)
    critical  ratio >= warning
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from config import ThresholdSettings
from core.exceptions import ConfigurationError


class UtilizationBand(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    CRITICAL = "critical"


def utilization(stroke_count: int, utilization_limit: int, machine_id: Optional[str] = None) -> float:
    """Return stroke_count / utilization_limit.

    Raises:
        ConfigurationError: If the limit is zero or negative.
    """
    if utilization_limit <= 0:
        raise ConfigurationError(
            "utilization_limit",
            utilization_limit,
            "must be a positive stroke count",
            machine_id=machine_id,
        )
    return stroke_count / utilization_limit


def threshold_crossed(ratio: float, watermark: float) -> bool:
    return ratio >= watermark


def utilization_band(ratio: float, thresholds: Optional[ThresholdSettings] = None) -> UtilizationBand:
    thresholds = thresholds or ThresholdSettings()
    if threshold_crossed(ratio, thresholds.warning_watermark):
        return UtilizationBand.CRITICAL
    if threshold_crossed(ratio, thresholds.elevated_band):
        return UtilizationBand.ELEVATED
    return UtilizationBand.NORMAL


class UtilizationModel:
    """Utilization ratio and watermark checks bound to one threshold configuration."""

    def __init__(self, thresholds: Optional[ThresholdSettings] = None):
        self.thresholds = thresholds or ThresholdSettings()

    @property
    def warning_watermark(self) -> float:
        return self.thresholds.warning_watermark

    @property
    def maintenance_watermark(self) -> float:
        return self.thresholds.maintenance_watermark

    def ratio(self, stroke_count: int, utilization_limit: int, machine_id: Optional[str] = None) -> float:
        return utilization(stroke_count, utilization_limit, machine_id=machine_id)

    def warning_crossed(self, ratio: float) -> bool:
        return threshold_crossed(ratio, self.thresholds.warning_watermark)

    def maintenance_crossed(self, ratio: float) -> bool:
        return threshold_crossed(ratio, self.thresholds.maintenance_watermark)

    def band(self, ratio: float) -> UtilizationBand:
        return utilization_band(ratio, self.thresholds)
