from typing import Optional

from ..config import AccuracyThresholds, QualityWeights
from ..models.event import AccuracyClass


def classify(
    error_deg: float, thresholds: AccuracyThresholds
) -> Optional[AccuracyClass]:
    """Map a combined angular error to its accuracy class.

    Returns:
        The tightest class whose bound admits ``error_deg``, or None when the
        error is looser than the ``fair`` bound
    """
    if error_deg <= thresholds.perfect:
        return AccuracyClass.PERFECT
    if error_deg <= thresholds.excellent:
        return AccuracyClass.EXCELLENT
    if error_deg <= thresholds.good:
        return AccuracyClass.GOOD
    if error_deg <= thresholds.fair:
        return AccuracyClass.FAIR
    return None


def quality_score(
    azimuth_error_deg: float,
    elevation_error_deg: float,
    target_elevation_deg: float,
    thresholds: AccuracyThresholds,
    weights: QualityWeights,
) -> float:
    """Score an alignment from 0 to 100.

    Azimuth error weighs more than elevation error. Steep targets lose
    ``penalty_per_degree`` points per degree of elevation angle above
    ``penalty_free_elevation_deg``.
    """
    total_weight = weights.azimuth_weight + weights.elevation_weight
    weighted_error = (
        weights.azimuth_weight * azimuth_error_deg
        + weights.elevation_weight * elevation_error_deg
    )
    score = 100.0 * (1.0 - weighted_error / (total_weight * thresholds.fair))

    excess = max(0.0, target_elevation_deg - weights.penalty_free_elevation_deg)
    score -= weights.penalty_per_degree * excess

    return round(min(100.0, max(0.0, score)), 1)
