"""Business logic services."""

from shop_profit.services.report_service import (
    ReportError,
    ReportRequest,
    ReportResult,
    ReportService,
    UnknownReportError,
)

__all__ = [
    "ReportError",
    "ReportRequest",
    "ReportResult",
    "ReportService",
    "UnknownReportError",
]
