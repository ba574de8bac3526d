from .accuracy import classify, quality_score
from .engine import (
    AlignmentSearchEngine,
    DayFailure,
    SearchResult,
    reference_scan,
)
from .feasibility import FeasibilityFilter, required_declination_range

__all__ = [
    "classify",
    "quality_score",
    "AlignmentSearchEngine",
    "DayFailure",
    "SearchResult",
    "reference_scan",
    "FeasibilityFilter",
    "required_declination_range",
]
