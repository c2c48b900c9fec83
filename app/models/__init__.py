"""
Models package - Import all models here for easy access
"""
from app.models.commission import (
    HeaderStatus,
    DetailScope,
    CommissionHeader,
    CommissionDetail,
    CommissionUsage,
    CommissionHeaderRevision,
    CommissionDetailRevision,
)

__all__ = [
    # Enums
    "HeaderStatus",
    "DetailScope",

    # Configuration
    "CommissionHeader",
    "CommissionDetail",

    # Usage
    "CommissionUsage",

    # History
    "CommissionHeaderRevision",
    "CommissionDetailRevision",
]
