"""Travel expense regulation (出張旅費規程) document model and text generation."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Optional, Sequence
from uuid import uuid4

from .core import ValidationError


# Japanese era years are computed as ``gregorian_year - ERA_START_YEAR_OFFSET``.
# 2018 makes 2019 "令和1年". This is not a calendar conversion: dates before
# the Reiwa era (2019-05-01) are still rendered as Reiwa years, and the value
# has to be changed by hand whenever the era changes.
ERA_START_YEAR_OFFSET = 2018
ERA_NAME = "令和"

ACTUAL_COST_MARKER = "実費"

DEFAULT_DISTANCE_THRESHOLD_KM = 50

TABLE_HEADER = (
    "（円）\n"
    "\t国内出張\t海外出張\n"
    "役職\t出張日当\t宿泊料\t交通費\t出張日当\t宿泊料\t支度料\t交通費"
)


@dataclass(frozen=True)
class CompanyInfo:
    name: str
    address: str = ""
    representative: str = ""
    revision: int = 1


@dataclass(frozen=True)
class PositionRate:
    name: str
    domestic_daily_allowance: int = 0
    domestic_accommodation: int = 0
    domestic_transportation: int = 0
    overseas_daily_allowance: int = 0
    overseas_accommodation: int = 0
    overseas_preparation: int = 0
    overseas_transportation: int = 0
    position_id: str = field(default_factory=lambda: str(uuid4()))


@dataclass(frozen=True)
class RegulationDocument:
    company_info: CompanyInfo
    implementation_date: date
    distance_threshold: int = DEFAULT_DISTANCE_THRESHOLD_KM
    is_transportation_real_expense: bool = False
    is_accommodation_real_expense: bool = False
    positions: tuple[PositionRate, ...] = ()


def format_era_date(value: date) -> str:
    return f"{ERA_NAME}{value.year - ERA_START_YEAR_OFFSET}年{value.month}月{value.day}日"


def position_cells(doc: RegulationDocument, position: PositionRate) -> list[Any]:
    """Rate table cells for one position, with actual-cost substitution applied."""
    accommodation_real = doc.is_accommodation_real_expense
    transportation_real = doc.is_transportation_real_expense
    return [
        position.domestic_daily_allowance,
        ACTUAL_COST_MARKER if accommodation_real else position.domestic_accommodation,
        ACTUAL_COST_MARKER if transportation_real else position.domestic_transportation,
        position.overseas_daily_allowance,
        ACTUAL_COST_MARKER if accommodation_real else position.overseas_accommodation,
        position.overseas_preparation,
        ACTUAL_COST_MARKER if transportation_real else position.overseas_transportation,
    ]


def render_rate_table(doc: RegulationDocument) -> str:
    return "\n".join(
        "\t".join(str(cell) for cell in [position.name, *position_cells(doc, position)])
        for position in doc.positions
    )


def generate_regulation_text(doc: RegulationDocument) -> str:
    """Render the full eleven-article regulation. Same input, same text."""
    return f"""出張旅費規程

（目的）
第１条　この規程は、役員または従業員が社命により、出張する場合の、旅費について定めたものである。

（適用範囲）
第２条　この規程は、役員及び全ての従業員について適用する。

（旅費の種類）
第３条　この規程に基づく旅費とは、出張日当、交通費、宿泊料、支度料の四種とし、その支給基準は第７条規定のとおりとする。ただし、交通費及び宿泊料についてはそれぞれ実費精算とすることができる。

（出張の定義）
第４条　出張とは、従業員が自宅または通常の勤務地を起点として、片道{doc.distance_threshold}ｋｍ以上の目的地に移動し、職務を遂行するものをいう。

（出張の承認）
第５条　従業員が出張を行う場合は、事前に所属長の承認を得なければならない。ただし、緊急の場合は事後承認とすることができる。

（出張の区分）
第６条　出張は、以下のとおり区分する。
　　　　１　国内出張
　　　　　国内出張とは、日本国内の用務先に赴く出張であり、所属長（または代表者）が認めたものとする。当日中に帰着することが可能なものは、日帰り出張として出張日当と交通費日当（実費精算可）、宿泊を伴う出張は、出張日当と交通費日当（実費精算可）、宿泊日当（実費精算可）を第７条に定める旅費を支給する。日帰り出張は1日、1泊2日は2日と日数を計算する。
　　　　２　海外出張
　　　　　海外出張とは、日本国外の地域への宿泊を伴う出張であり、所属長（または代表者）が認めたものとする。出張日当と交通費日当（実費精算可）、宿泊日当（実費精算可）に加えて、支度料を第７条に定める旅費を支給する。

（旅費一覧）
第７条　旅費は、以下のとおり役職に応じて支給する。
{TABLE_HEADER}
{render_rate_table(doc)}

（交通機関）
第８条　利用する交通手段は、原則として、鉄道、船舶、飛行機、バスとする。
　　　　２　前項に関わらず、会社が必要と認めた場合は、タクシーまたは社有の自動車を利用できるものとする。

（旅費の支給方法）
第９条　旅費は、原則として出張終了後に精算により支給する。ただし、必要に応じて概算払いを行うことができる。

（規程の改廃）
第１０条　本規程の改廃は、取締役会の決議により行う。

（附則）
第１１条　本規程は、{format_era_date(doc.implementation_date)}より実施する。

{doc.company_info.name}
{doc.company_info.representative}"""


def regulation_name(doc: RegulationDocument) -> str:
    return f"{doc.company_info.name} 出張旅費規程"


def export_filename(doc: RegulationDocument, suffix: str = "txt") -> str:
    return f"出張旅費規程_{doc.company_info.name}_v{doc.company_info.revision}.{suffix}"


DEFAULT_POSITIONS: tuple[PositionRate, ...] = (
    PositionRate("代表取締役", 8000, 15000, 3000, 15000, 25000, 5000, 5000, position_id="1"),
    PositionRate("取締役", 7000, 12000, 2500, 12000, 20000, 4000, 4000, position_id="2"),
    PositionRate("執行役員", 6000, 10000, 2000, 10000, 18000, 3000, 3000, position_id="3"),
    PositionRate("従業員", 5000, 8000, 2000, 8000, 15000, 2000, 2000, position_id="4"),
)


def default_regulation_document(implementation_date: Optional[date] = None) -> RegulationDocument:
    """Starting point offered by the regulation editor."""
    return RegulationDocument(
        company_info=CompanyInfo(
            name="株式会社サンプル",
            address="東京都千代田区丸の内1-1-1",
            representative="代表取締役 山田太郎",
            revision=1,
        ),
        implementation_date=implementation_date or date.today(),
        positions=DEFAULT_POSITIONS,
    )


def new_position(name: str = "新しい役職") -> PositionRate:
    return PositionRate(name=name)


def add_position(doc: RegulationDocument, position: Optional[PositionRate] = None) -> RegulationDocument:
    return replace(doc, positions=(*doc.positions, position or new_position()))


def update_position(doc: RegulationDocument, position_id: str, **changes: Any) -> RegulationDocument:
    if not any(p.position_id == position_id for p in doc.positions):
        raise ValidationError(f"Unknown position: {position_id}")
    positions = tuple(
        replace(p, **changes) if p.position_id == position_id else p for p in doc.positions
    )
    return replace(doc, positions=positions)


def remove_position(doc: RegulationDocument, position_id: str) -> RegulationDocument:
    """Drop a position row. The last remaining row cannot be removed."""
    if len(doc.positions) <= 1:
        raise ValidationError("A regulation must keep at least one position.")
    positions = tuple(p for p in doc.positions if p.position_id != position_id)
    if len(positions) == len(doc.positions):
        raise ValidationError(f"Unknown position: {position_id}")
    return replace(doc, positions=positions)


def build_positions(rows: Sequence[dict[str, Any]]) -> tuple[PositionRate, ...]:
    """Rebuild positions from stored rows, treating missing rates as 0."""
    return tuple(
        PositionRate(
            name=row["position_name"],
            domestic_daily_allowance=row["domestic_daily_allowance"] or 0,
            domestic_accommodation=row["domestic_accommodation_allowance"] or 0,
            domestic_transportation=row["domestic_transportation_allowance"] or 0,
            overseas_daily_allowance=row["overseas_daily_allowance"] or 0,
            overseas_accommodation=row["overseas_accommodation_allowance"] or 0,
            overseas_preparation=row["overseas_preparation_allowance"] or 0,
            overseas_transportation=row["overseas_transportation_allowance"] or 0,
            position_id=str(row["id"]),
        )
        for row in rows
    )
