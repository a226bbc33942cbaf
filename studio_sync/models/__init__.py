"""Domain models for the order -> attendance sync.

Source orders, classification results, projected records, attendance rows,
configuration and run reports.
"""

from .classification import Block, ClassificationResult, ClassName, Role
from .config_models import DatabaseConfig, ShopifyConfig, SyncConfig, TableNames, TermConfig
from .orders import Customer, RawLineItem, RawOrder
from .records import (
    EnrollmentRecord,
    FreeAttendanceRow,
    FreeClassRecord,
    PaidAttendanceRow,
    SocialAttendanceRecord,
)
from .reconciliation_report import ReconciliationReport, StepResult, StepStatus

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ShopifyConfig",
    "SyncConfig",
    "TableNames",
    "TermConfig",
    # Source models
    "Customer",
    "RawLineItem",
    "RawOrder",
    # Classification
    "Block",
    "ClassName",
    "ClassificationResult",
    "Role",
    # Projected records
    "EnrollmentRecord",
    "FreeAttendanceRow",
    "FreeClassRecord",
    "PaidAttendanceRow",
    "SocialAttendanceRecord",
    # Run results
    "ReconciliationReport",
    "StepResult",
    "StepStatus",
]
