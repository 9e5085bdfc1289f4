"""Per-user allowance rate configuration.

Stored settings rows come in two shapes. Schema version 1 is the flat
layout (one transportation and one accommodation rate shared by domestic
and overseas trips). Schema version 2 splits every category by direction
and adds the overseas preparation allowance (支度料). Everything is
migrated to the version 2 shape before it reaches the calculator.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from .core import ValidationError


LATEST_SCHEMA_VERSION = 2

V1_DEFAULTS: dict[str, Any] = {
    "domestic_daily_allowance": 15000,
    "overseas_daily_allowance": 25000,
    "transportation_daily_allowance": 6000,
    "accommodation_daily_allowance": 16000,
    "use_transportation_allowance": True,
    "use_accommodation_allowance": True,
}

V2_DEFAULTS: dict[str, Any] = {
    "domestic_daily_allowance": 15000,
    "overseas_daily_allowance": 25000,
    "domestic_transportation_daily_allowance": 6000,
    "domestic_accommodation_daily_allowance": 16000,
    "overseas_transportation_daily_allowance": 8000,
    "overseas_accommodation_daily_allowance": 20000,
    "overseas_preparation_allowance": 5000,
    "domestic_use_transportation_allowance": True,
    "domestic_use_accommodation_allowance": True,
    "overseas_use_transportation_allowance": True,
    "overseas_use_accommodation_allowance": True,
    "overseas_use_preparation_allowance": True,
}

DEFAULTS_BY_VERSION: dict[int, dict[str, Any]] = {1: V1_DEFAULTS, 2: V2_DEFAULTS}

V1_ONLY_KEYS = frozenset(V1_DEFAULTS) - frozenset(V2_DEFAULTS)
V2_ONLY_KEYS = frozenset(V2_DEFAULTS) - frozenset(V1_DEFAULTS)

TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
FALSE_STRINGS = frozenset({"false", "0", "no", "off"})

RATE_FIELDS = (
    "domestic_daily_allowance",
    "overseas_daily_allowance",
    "domestic_transportation_daily_allowance",
    "domestic_accommodation_daily_allowance",
    "overseas_transportation_daily_allowance",
    "overseas_accommodation_daily_allowance",
    "overseas_preparation_allowance",
)


@dataclass(frozen=True)
class TripRates:
    """Rates and flags that apply to one trip direction."""

    daily: int
    transportation: int
    accommodation: int
    preparation: int
    use_transportation: bool
    use_accommodation: bool
    use_preparation: bool


@dataclass(frozen=True)
class RateConfiguration:
    domestic_daily_allowance: int = V2_DEFAULTS["domestic_daily_allowance"]
    overseas_daily_allowance: int = V2_DEFAULTS["overseas_daily_allowance"]
    domestic_transportation_daily_allowance: int = V2_DEFAULTS["domestic_transportation_daily_allowance"]
    domestic_accommodation_daily_allowance: int = V2_DEFAULTS["domestic_accommodation_daily_allowance"]
    overseas_transportation_daily_allowance: int = V2_DEFAULTS["overseas_transportation_daily_allowance"]
    overseas_accommodation_daily_allowance: int = V2_DEFAULTS["overseas_accommodation_daily_allowance"]
    overseas_preparation_allowance: int = V2_DEFAULTS["overseas_preparation_allowance"]
    domestic_use_transportation_allowance: bool = True
    domestic_use_accommodation_allowance: bool = True
    overseas_use_transportation_allowance: bool = True
    overseas_use_accommodation_allowance: bool = True
    overseas_use_preparation_allowance: bool = True
    schema_version: int = LATEST_SCHEMA_VERSION

    def for_trip(self, is_overseas: bool) -> TripRates:
        if is_overseas:
            return TripRates(
                daily=self.overseas_daily_allowance,
                transportation=self.overseas_transportation_daily_allowance,
                accommodation=self.overseas_accommodation_daily_allowance,
                preparation=self.overseas_preparation_allowance,
                use_transportation=self.overseas_use_transportation_allowance,
                use_accommodation=self.overseas_use_accommodation_allowance,
                use_preparation=self.overseas_use_preparation_allowance,
            )
        return TripRates(
            daily=self.domestic_daily_allowance,
            transportation=self.domestic_transportation_daily_allowance,
            accommodation=self.domestic_accommodation_daily_allowance,
            preparation=0,
            use_transportation=self.domestic_use_transportation_allowance,
            use_accommodation=self.domestic_use_accommodation_allowance,
            use_preparation=False,
        )

    def validate(self) -> None:
        negative = [name for name in RATE_FIELDS if getattr(self, name) < 0]
        if negative:
            raise ValidationError(f"Rates must not be negative: {', '.join(negative)}")

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


def detect_schema_version(partial: Mapping[str, Any]) -> int:
    """Schema version of a stored or submitted mapping.

    An explicit ``schema_version`` wins; otherwise the version is inferred
    from the keys present. Keys that only exist in the other version raise
    :class:`ValidationError` instead of being ignored.
    """
    present = {key for key, value in partial.items() if value is not None}
    v1_only = sorted(present & V1_ONLY_KEYS)
    v2_only = sorted(present & V2_ONLY_KEYS)

    explicit = partial.get("schema_version")
    if explicit is not None:
        version = int(explicit)
        if version not in DEFAULTS_BY_VERSION:
            raise ValidationError(f"Unknown allowance settings schema version: {version}")
    elif v2_only:
        version = 2
    elif v1_only:
        version = 1
    else:
        version = LATEST_SCHEMA_VERSION

    foreign = v2_only if version == 1 else v1_only
    if foreign:
        raise ValidationError(
            f"Allowance settings mix schema versions; not valid for version {version}: {', '.join(foreign)}"
        )
    return version


def parse_flag(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    raise ValidationError(f"{key} must be a boolean, got {value!r}")


def parse_amount(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an amount in yen, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an amount in yen, got {value!r}") from None


def fill_defaults(partial: Mapping[str, Any], schema_version: int) -> dict[str, Any]:
    """Fill absent (missing or None) fields from the version's default table."""
    filled: dict[str, Any] = {}
    for key, default in DEFAULTS_BY_VERSION[schema_version].items():
        value = partial.get(key)
        if value is None:
            filled[key] = default
        elif isinstance(default, bool):
            filled[key] = parse_flag(key, value)
        else:
            filled[key] = parse_amount(key, value)
    return filled


def migrate_v1(values: Mapping[str, Any]) -> dict[str, Any]:
    transportation = values["transportation_daily_allowance"]
    accommodation = values["accommodation_daily_allowance"]
    use_transportation = values["use_transportation_allowance"]
    use_accommodation = values["use_accommodation_allowance"]
    return {
        "domestic_daily_allowance": values["domestic_daily_allowance"],
        "overseas_daily_allowance": values["overseas_daily_allowance"],
        "domestic_transportation_daily_allowance": transportation,
        "domestic_accommodation_daily_allowance": accommodation,
        "overseas_transportation_daily_allowance": transportation,
        "overseas_accommodation_daily_allowance": accommodation,
        # The flat layout has no preparation allowance.
        "overseas_preparation_allowance": 0,
        "domestic_use_transportation_allowance": use_transportation,
        "domestic_use_accommodation_allowance": use_accommodation,
        "overseas_use_transportation_allowance": use_transportation,
        "overseas_use_accommodation_allowance": use_accommodation,
        "overseas_use_preparation_allowance": False,
    }


def with_defaults(
    partial: Optional[Mapping[str, Any]] = None,
    schema_version: Optional[int] = None,
    validate: bool = False,
) -> RateConfiguration:
    """Build a canonical configuration from a stored or user-edited mapping.

    Absent fields take the defaults of the detected schema version; boolean
    use-flags stay on unless explicitly stored as false. Negative rates are
    kept as-is unless ``validate`` is set.
    """
    partial = dict(partial or {})
    if schema_version is not None:
        partial["schema_version"] = schema_version
    version = detect_schema_version(partial)
    values = fill_defaults(partial, version)
    if version == 1:
        values = migrate_v1(values)
    config = RateConfiguration(**values, schema_version=LATEST_SCHEMA_VERSION)
    if validate:
        config.validate()
    return config
