from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

from ryohi.models import RegulationRecord, TripApplication, TripAttachment
from ryohi.rates import RateConfiguration
from ryohi.regulation import PositionRate


def _normalize_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


SETTINGS_COLUMNS = (
    "schema_version",
    "domestic_daily_allowance",
    "overseas_daily_allowance",
    "domestic_transportation_daily_allowance",
    "domestic_accommodation_daily_allowance",
    "overseas_transportation_daily_allowance",
    "overseas_accommodation_daily_allowance",
    "overseas_preparation_allowance",
    "domestic_use_transportation_allowance",
    "domestic_use_accommodation_allowance",
    "overseas_use_transportation_allowance",
    "overseas_use_accommodation_allowance",
    "overseas_use_preparation_allowance",
)


class AllowanceSettingsRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get_by_user(self, user_id: str) -> Optional[dict[str, Any]]:
        row = self.conn.execute(
            f"SELECT {', '.join(SETTINGS_COLUMNS)} FROM allowance_settings WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return dict(row) if row else None

    def upsert(self, user_id: str, config: RateConfiguration) -> None:
        values = config.to_row()
        placeholders = ", ".join("?" for _ in SETTINGS_COLUMNS)
        updates = ", ".join(f"{column} = excluded.{column}" for column in SETTINGS_COLUMNS)
        self.conn.execute(
            f"""
            INSERT INTO allowance_settings(user_id, {', '.join(SETTINGS_COLUMNS)}, updated_at)
            VALUES (?, {placeholders}, ?)
            ON CONFLICT(user_id)
            DO UPDATE SET {updates}, updated_at = excluded.updated_at
            """,
            (user_id, *[_normalize_value(values[column]) for column in SETTINGS_COLUMNS], _now()),
        )


class TripApplicationRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create(self, application: TripApplication) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO business_trip_applications(
                user_id, title, description, destination, start_date, end_date,
                purpose, is_overseas, estimated_cost, status, submitted_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                application.user_id,
                application.title,
                application.description,
                application.destination,
                application.start_date.isoformat(),
                application.end_date.isoformat(),
                application.purpose,
                int(application.is_overseas),
                application.estimated_cost,
                application.status,
                _now(),
            ),
        )
        return int(cursor.lastrowid)

    def get_by_id(self, application_id: int) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM business_trip_applications WHERE id = ?", (application_id,)
        ).fetchone()

    def list_for_user(self, user_id: str) -> list[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM business_trip_applications WHERE user_id = ? ORDER BY submitted_at DESC, id DESC",
            (user_id,),
        ).fetchall()

    def update_status(self, application_id: int, status: str, approved_by: str | None = None) -> int:
        now = _now()
        approved_at = now if status == "approved" else None
        cursor = self.conn.execute(
            """
            UPDATE business_trip_applications
            SET status = ?, approved_at = ?, approved_by = ?, updated_at = ?
            WHERE id = ?
            """,
            (status, approved_at, approved_by if status == "approved" else None, now, application_id),
        )
        return cursor.rowcount

    def add_attachment(self, attachment: TripAttachment) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO business_trip_attachments(
                business_trip_application_id, file_name, file_size, file_type, file_url, file_path
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                attachment.application_id,
                attachment.file_name,
                attachment.file_size,
                attachment.file_type,
                attachment.file_url,
                attachment.file_path,
            ),
        )
        return int(cursor.lastrowid)

    def list_attachments(self, application_id: int) -> list[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM business_trip_attachments WHERE business_trip_application_id = ? ORDER BY id",
            (application_id,),
        ).fetchall()


class RegulationRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _record_values(self, record: RegulationRecord) -> tuple[Any, ...]:
        return (
            record.regulation_name,
            record.regulation_type,
            record.company_name,
            record.company_address,
            record.representative,
            record.distance_threshold,
            _normalize_value(record.implementation_date),
            record.revision_number,
            _normalize_value(record.is_transportation_real_expense),
            _normalize_value(record.is_accommodation_real_expense),
            record.regulation_text,
            record.status,
        )

    def create(self, record: RegulationRecord) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO travel_expense_regulations(
                regulation_name, regulation_type, company_name, company_address, representative,
                distance_threshold, implementation_date, revision_number,
                is_transportation_real_expense, is_accommodation_real_expense,
                regulation_text, status, user_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (*self._record_values(record), record.user_id),
        )
        return int(cursor.lastrowid)

    def update(self, regulation_id: int, record: RegulationRecord) -> int:
        cursor = self.conn.execute(
            """
            UPDATE travel_expense_regulations
            SET regulation_name = ?, regulation_type = ?, company_name = ?, company_address = ?,
                representative = ?, distance_threshold = ?, implementation_date = ?,
                revision_number = ?, is_transportation_real_expense = ?,
                is_accommodation_real_expense = ?, regulation_text = ?, status = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (*self._record_values(record), _now(), regulation_id),
        )
        return cursor.rowcount

    def get_by_id(self, regulation_id: int) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM travel_expense_regulations WHERE id = ?", (regulation_id,)
        ).fetchone()

    def list_for_user(self, user_id: str) -> list[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM travel_expense_regulations WHERE user_id = ? ORDER BY id DESC",
            (user_id,),
        ).fetchall()

    def replace_positions(self, regulation_id: int, positions: Sequence[PositionRate]) -> list[int]:
        self.conn.execute("DELETE FROM regulation_positions WHERE regulation_id = ?", (regulation_id,))
        ids: list[int] = []
        for order, position in enumerate(positions):
            cursor = self.conn.execute(
                """
                INSERT INTO regulation_positions(
                    regulation_id, sort_order, position_name,
                    domestic_daily_allowance, domestic_accommodation_allowance,
                    domestic_transportation_allowance, overseas_daily_allowance,
                    overseas_accommodation_allowance, overseas_preparation_allowance,
                    overseas_transportation_allowance
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    regulation_id,
                    order,
                    position.name,
                    position.domestic_daily_allowance,
                    position.domestic_accommodation,
                    position.domestic_transportation,
                    position.overseas_daily_allowance,
                    position.overseas_accommodation,
                    position.overseas_preparation,
                    position.overseas_transportation,
                ),
            )
            ids.append(int(cursor.lastrowid))
        return ids

    def list_positions(self, regulation_id: int) -> list[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM regulation_positions WHERE regulation_id = ? ORDER BY sort_order, id",
            (regulation_id,),
        ).fetchall()
