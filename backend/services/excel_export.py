from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from ryohi.regulation import RegulationDocument, position_cells, regulation_name

DEFAULT_MAPPING_PATH = Path(__file__).resolve().parents[1] / "config" / "regulation_export.yaml"

RATE_COLUMN_KEYS = (
    "domestic_daily_allowance",
    "domestic_accommodation",
    "domestic_transportation",
    "overseas_daily_allowance",
    "overseas_accommodation",
    "overseas_preparation",
    "overseas_transportation",
)


@dataclass
class RegulationExcelExportService:
    """Export a regulation's company block and rate table into a workbook."""

    mapping_path: Path = DEFAULT_MAPPING_PATH

    def __post_init__(self) -> None:
        self.mapping = self._load_mapping(Path(self.mapping_path))

    @staticmethod
    def _load_mapping(mapping_path: Path) -> dict[str, Any]:
        with mapping_path.open("r", encoding="utf-8") as mapping_file:
            loaded = yaml.safe_load(mapping_file)

        if not isinstance(loaded, dict):
            msg = f"Mapping file must contain a dictionary at root: {mapping_path}"
            raise ValueError(msg)

        return loaded

    @property
    def sheet_name(self) -> str:
        return self.mapping["workbook"]["sheet_name"]

    def build_workbook(self, doc: RegulationDocument) -> Workbook:
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = self.sheet_name

        title_cell = self.mapping["title_cell"]
        worksheet[title_cell] = regulation_name(doc)
        worksheet[title_cell].font = Font(bold=True, size=14)

        self._map_labels(worksheet, self.mapping.get("labels", {}))
        self._map_meta(worksheet, doc)
        self._map_rate_table(worksheet, doc)
        return workbook

    def generate_export(self, doc: RegulationDocument, output_path: Path | str) -> Path:
        """Fill the mapped cells for ``doc`` and save the workbook to output_path."""
        workbook = self.build_workbook(doc)

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(output_path)

        return output_path

    def _map_labels(self, sheet: Worksheet, labels: dict[str, str]) -> None:
        for cell, text in labels.items():
            sheet[cell] = text

    def _map_meta(self, sheet: Worksheet, doc: RegulationDocument) -> None:
        values = {
            "company_name": doc.company_info.name,
            "company_address": doc.company_info.address,
            "representative": doc.company_info.representative,
            "revision": doc.company_info.revision,
            "implementation_date": doc.implementation_date.isoformat(),
            "distance_threshold": doc.distance_threshold,
        }
        for field, cell in self.mapping["meta"].items():
            sheet[cell] = values.get(field)

    def _map_rate_table(self, sheet: Worksheet, doc: RegulationDocument) -> None:
        section = self.mapping["rate_table"]
        start_row = int(section["start_row"])
        columns = section["columns"]

        for offset, position in enumerate(doc.positions):
            row = start_row + offset
            values = {"name": position.name, **dict(zip(RATE_COLUMN_KEYS, position_cells(doc, position)))}
            for key, column in columns.items():
                sheet[f"{column}{row}"] = values.get(key)

    def get_mandatory_cells(self) -> list[str]:
        verification = self.mapping.get("verification", {})
        mandatory_cells = verification.get("mandatory_cells", [])
        if not isinstance(mandatory_cells, list):
            msg = "verification.mandatory_cells must be a list of cell references"
            raise ValueError(msg)
        return mandatory_cells


def read_cells(path: Path | str, cells: list[str], sheet_name: str) -> dict[str, Any]:
    """Utility for validation/testing: read exact cell values from an exported workbook."""
    workbook = load_workbook(path, data_only=False)
    sheet = workbook[sheet_name]
    return {cell: sheet[cell].value for cell in cells}
