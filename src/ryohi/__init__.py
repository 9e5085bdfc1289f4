from .core import (
    AllowanceBreakdown,
    TripAllowanceRequest,
    ValidationError,
    compute_allowance,
    count_trip_days,
)
from .rates import RateConfiguration, TripRates, with_defaults
from .regulation import (
    ACTUAL_COST_MARKER,
    ERA_START_YEAR_OFFSET,
    CompanyInfo,
    PositionRate,
    RegulationDocument,
    generate_regulation_text,
)
from .ui import render_allowance_summary, render_regulation_print_html

__all__ = [
    "ACTUAL_COST_MARKER",
    "AllowanceBreakdown",
    "CompanyInfo",
    "ERA_START_YEAR_OFFSET",
    "PositionRate",
    "RateConfiguration",
    "RegulationDocument",
    "TripAllowanceRequest",
    "TripRates",
    "ValidationError",
    "compute_allowance",
    "count_trip_days",
    "generate_regulation_text",
    "render_allowance_summary",
    "render_regulation_print_html",
    "with_defaults",
]
