from __future__ import annotations

from dataclasses import replace
from datetime import date
from pathlib import Path

from backend.services.excel_export import RegulationExcelExportService, read_cells
from ryohi.regulation import ACTUAL_COST_MARKER, default_regulation_document


def main() -> int:
    service = RegulationExcelExportService()
    sheet_name = service.sheet_name

    doc = replace(
        default_regulation_document(date(2026, 4, 1)),
        is_accommodation_real_expense=True,
    )

    output_path = Path("artifacts/sample_regulation_export.xlsx")
    service.generate_export(doc, output_path)

    mandatory_cells = service.get_mandatory_cells()
    values = read_cells(output_path, mandatory_cells, sheet_name)
    missing = [cell for cell, value in values.items() if value in (None, "")]

    if missing:
        print("Verification failed. Missing mandatory values in:", ", ".join(missing))
        return 1

    accommodation = read_cells(output_path, ["C12", "F12"], sheet_name)
    if any(value != ACTUAL_COST_MARKER for value in accommodation.values()):
        print("Verification failed. Accommodation cells are not marked as actual cost:", accommodation)
        return 1

    print(f"Verification passed. Export generated at {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
