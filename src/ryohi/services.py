from __future__ import annotations

import sqlite3
import time
from datetime import date
from pathlib import Path
from typing import Any, Optional

from ryohi.core import (
    AllowanceBreakdown,
    TripAllowanceRequest,
    NotFoundError,
    ValidationError,
    compute_allowance,
    sanitize_filename,
    sanitize_identifier,
)
from ryohi.logging_config import get_logger
from ryohi.models import APPLICATION_STATUSES, RegulationRecord, TripApplication, TripApplicationDraft, TripAttachment
from ryohi.rates import RateConfiguration, with_defaults
from ryohi.regulation import (
    DEFAULT_DISTANCE_THRESHOLD_KM,
    CompanyInfo,
    RegulationDocument,
    build_positions,
    generate_regulation_text,
    regulation_name,
)
from ryohi.repositories import AllowanceSettingsRepository, RegulationRepository, TripApplicationRepository

logger = get_logger(__name__)


class AllowanceSettingsService:
    """Loads and saves the per-user allowance configuration."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.settings = AllowanceSettingsRepository(conn)

    def load_for_user(self, user_id: str) -> RateConfiguration:
        stored = self.settings.get_by_user(user_id)
        if stored is None:
            logger.debug("No allowance settings for user %s, using defaults", user_id)
            return with_defaults()
        return with_defaults(stored)

    def save_for_user(self, user_id: str, config: RateConfiguration) -> RateConfiguration:
        config.validate()
        with self.conn:
            self.settings.upsert(user_id, config)
        logger.info("Saved allowance settings for user %s", user_id)
        return config


class TripApplicationService:
    """Submits business trip applications with an allowance estimate."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.applications = TripApplicationRepository(conn)
        self.settings = AllowanceSettingsService(conn)

    def estimate(
        self,
        user_id: str,
        start_date: Optional[date],
        end_date: Optional[date],
        is_overseas: bool,
    ) -> Optional[AllowanceBreakdown]:
        rates = self.settings.load_for_user(user_id)
        return compute_allowance(TripAllowanceRequest(start_date, end_date, is_overseas, rates))

    def submit(self, user_id: str, draft: TripApplicationDraft) -> int:
        missing = [
            name
            for name in ("purpose", "destination", "start_date", "end_date")
            if getattr(draft, name) in (None, "")
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        breakdown = self.estimate(user_id, draft.start_date, draft.end_date, draft.is_overseas)
        if breakdown is None:
            raise ValidationError("Trip dates are required to estimate the cost.")
        application = TripApplication(
            user_id=user_id,
            title=f"出張申請 - {draft.destination}",
            description=draft.purpose,
            destination=draft.destination,
            start_date=draft.start_date,
            end_date=draft.end_date,
            purpose=draft.purpose,
            estimated_cost=breakdown.grand_total,
            is_overseas=draft.is_overseas,
        )
        with self.conn:
            application_id = self.applications.create(application)
        logger.info(
            "Submitted trip application %s for user %s (estimated cost %s)",
            application_id,
            user_id,
            breakdown.grand_total,
        )
        return application_id

    def get(self, application_id: int) -> sqlite3.Row:
        row = self.applications.get_by_id(application_id)
        if row is None:
            raise NotFoundError(f"Trip application {application_id} not found")
        return row

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self.applications.list_for_user(user_id)]

    def update_status(self, application_id: int, status: str, approved_by: str | None = None) -> sqlite3.Row:
        if status not in APPLICATION_STATUSES:
            raise ValidationError(f"Unknown application status: {status}")
        with self.conn:
            updated = self.applications.update_status(application_id, status, approved_by)
        if not updated:
            raise NotFoundError(f"Trip application {application_id} not found")
        logger.info("Trip application %s is now %s", application_id, status)
        return self.get(application_id)

    def attach_file(
        self,
        application_id: int,
        file_name: str,
        content: bytes,
        file_type: str | None,
        upload_root: Path,
        timestamp_ms: int | None = None,
    ) -> tuple[int, str]:
        """Store an uploaded file under ``upload_root`` and record it.

        The file is written before its row is committed; if recording the row
        fails the written file is removed again, so no attachment row ever
        points at a missing file.
        """
        application = self.get(application_id)
        timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        file_path = "/".join(
            [
                "business_trip_attachments",
                sanitize_identifier(application["user_id"]),
                str(application_id),
                f"{timestamp_ms}_{sanitize_filename(file_name)}",
            ]
        )
        destination = Path(upload_root) / file_path
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(content)
        try:
            with self.conn:
                attachment_id = self.applications.add_attachment(
                    TripAttachment(
                        application_id=application_id,
                        file_name=file_name,
                        file_size=len(content),
                        file_type=file_type,
                        file_path=file_path,
                    )
                )
        except Exception:
            destination.unlink(missing_ok=True)
            raise
        logger.info("Stored attachment %s for trip application %s", file_path, application_id)
        return attachment_id, file_path


class RegulationService:
    """Persists regulation documents together with their generated text."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.regulations = RegulationRepository(conn)

    def save(self, user_id: str, doc: RegulationDocument, regulation_id: int | None = None) -> int:
        record = RegulationRecord(
            user_id=user_id,
            regulation_name=regulation_name(doc),
            company_name=doc.company_info.name,
            company_address=doc.company_info.address,
            representative=doc.company_info.representative,
            distance_threshold=doc.distance_threshold,
            implementation_date=doc.implementation_date,
            revision_number=doc.company_info.revision,
            is_transportation_real_expense=doc.is_transportation_real_expense,
            is_accommodation_real_expense=doc.is_accommodation_real_expense,
            regulation_text=generate_regulation_text(doc),
        )
        with self.conn:
            if regulation_id is None:
                regulation_id = self.regulations.create(record)
            elif not self.regulations.update(regulation_id, record):
                raise NotFoundError(f"Regulation {regulation_id} not found")
            self.regulations.replace_positions(regulation_id, doc.positions)
        logger.info("Saved regulation %s (%d positions)", regulation_id, len(doc.positions))
        return regulation_id

    def get_row(self, regulation_id: int) -> sqlite3.Row:
        row = self.regulations.get_by_id(regulation_id)
        if row is None:
            raise NotFoundError(f"Regulation {regulation_id} not found")
        return row

    def load(self, regulation_id: int) -> RegulationDocument:
        row = self.get_row(regulation_id)
        positions = self.regulations.list_positions(regulation_id)
        return document_from_row(row, positions)

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self.regulations.list_for_user(user_id)]


def document_from_row(row: Any, positions: list[Any]) -> RegulationDocument:
    """Rebuild an editable document, applying the editor's fallbacks for empty columns."""
    implementation_date = row["implementation_date"]
    return RegulationDocument(
        company_info=CompanyInfo(
            name=row["company_name"] or "",
            address=row["company_address"] or "",
            representative=row["representative"] or "",
            revision=row["revision_number"] or 1,
        ),
        implementation_date=date.fromisoformat(implementation_date) if implementation_date else date.today(),
        distance_threshold=row["distance_threshold"] or DEFAULT_DISTANCE_THRESHOLD_KM,
        is_transportation_real_expense=bool(row["is_transportation_real_expense"]),
        is_accommodation_real_expense=bool(row["is_accommodation_real_expense"]),
        positions=build_positions(positions),
    )
