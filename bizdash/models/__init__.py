"""ORM model package."""

from bizdash.models.entities import (
    Cadence,
    CompareMode,
    Dataset,
    Organization,
    PivotDuplicatePolicy,
    ReportDefinition,
    ReportLayout,
)

__all__ = [
    "Cadence",
    "CompareMode",
    "Dataset",
    "Organization",
    "PivotDuplicatePolicy",
    "ReportDefinition",
    "ReportLayout",
]
