from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path
import re
from typing import TYPE_CHECKING, Any, Optional, Union

if TYPE_CHECKING:
    from .rates import RateConfiguration


RULE_VERSION = "JP_TRAVEL_ALLOWANCE_V2"

DateLike = Union[date, datetime]


class ValidationError(ValueError):
    """Raised when allowance or regulation input cannot be used as given."""


class NotFoundError(LookupError):
    """Raised when a stored application or regulation does not exist."""


@dataclass(frozen=True)
class TripAllowanceRequest:
    start_date: Optional[DateLike]
    end_date: Optional[DateLike]
    is_overseas: bool
    rates: "RateConfiguration"

    def has_dates(self) -> bool:
        return self.start_date is not None and self.end_date is not None


@dataclass(frozen=True)
class AllowanceBreakdown:
    days: int
    daily_allowance_total: int
    transportation_total: int
    accommodation_total: int
    preparation_total: int = 0
    rule_version: str = RULE_VERSION
    calculation_steps: tuple[str, ...] = field(default_factory=tuple, compare=False)

    @property
    def nights(self) -> int:
        return max(self.days - 1, 0)

    @property
    def grand_total(self) -> int:
        # The one-off preparation allowance is reported beside the total, never inside it.
        return self.daily_allowance_total + self.transportation_total + self.accommodation_total

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["nights"] = self.nights
        payload["grand_total"] = self.grand_total
        payload["calculation_steps"] = list(self.calculation_steps)
        return payload


def as_calendar_date(value: DateLike) -> date:
    # Times of day are ignored: trips are counted in local calendar days.
    if isinstance(value, datetime):
        return value.date()
    return value


def count_trip_days(start: DateLike, end: DateLike) -> int:
    """Inclusive number of calendar days; a same-day trip counts as one."""
    start_day = as_calendar_date(start)
    end_day = as_calendar_date(end)
    if end_day < start_day:
        raise ValidationError(
            f"Trip end date {end_day.isoformat()} is before start date {start_day.isoformat()}."
        )
    return (end_day - start_day).days + 1


def compute_allowance(request: TripAllowanceRequest) -> Optional[AllowanceBreakdown]:
    """Estimate the allowances for one trip.

    Returns ``None`` while either date is still missing so that callers can
    tell "nothing to compute yet" apart from a zero estimate. Reversed date
    ranges and negative rates raise :class:`ValidationError`.
    """
    if not request.has_dates():
        return None

    request.rates.validate()
    days = count_trip_days(request.start_date, request.end_date)
    rates = request.rates.for_trip(request.is_overseas)
    direction = "overseas" if request.is_overseas else "domestic"

    steps = [f"Applying rule version: {RULE_VERSION}", f"{direction} trip of {days} day(s)."]

    daily_total = days * rates.daily
    steps.append(f"Daily allowance = {days} x {rates.daily} = {daily_total}.")

    if rates.use_transportation:
        transportation_total = days * rates.transportation
        steps.append(
            f"Transportation allowance = {days} x {rates.transportation} = {transportation_total}."
        )
    else:
        transportation_total = 0
        steps.append("Transportation allowance disabled.")

    if rates.use_accommodation and days > 1:
        accommodation_total = (days - 1) * rates.accommodation
        steps.append(
            f"Accommodation allowance = {days - 1} night(s) x {rates.accommodation} = {accommodation_total}."
        )
    else:
        accommodation_total = 0
        steps.append(
            "Accommodation allowance disabled."
            if not rates.use_accommodation
            else "No nights stayed, no accommodation allowance."
        )

    total = daily_total + transportation_total + accommodation_total
    steps.append(f"Total = {total}.")

    preparation_total = rates.preparation if rates.use_preparation else 0
    if preparation_total:
        steps.append(f"Preparation allowance (paid separately) = {preparation_total}.")

    return AllowanceBreakdown(
        days=days,
        daily_allowance_total=daily_total,
        transportation_total=transportation_total,
        accommodation_total=accommodation_total,
        preparation_total=preparation_total,
        calculation_steps=tuple(steps),
    )


def sanitize_identifier(value: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9_-]", "_", value)
    return safe.strip("_") or "item"


def sanitize_filename(value: str) -> str:
    value = Path(value).name
    safe = re.sub(r"[^\w.-]", "_", value)
    return safe or "upload.bin"
