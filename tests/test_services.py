import sqlite3
from datetime import date

import pytest

from ryohi.core import NotFoundError, ValidationError
from ryohi.db import DEFAULT_MIGRATION_PATH, apply_sqlite_migration
from ryohi.models import TripApplicationDraft
from ryohi.rates import RateConfiguration, with_defaults
from ryohi.regulation import add_position, default_regulation_document, generate_regulation_text
from ryohi.repositories import AllowanceSettingsRepository
from ryohi.services import AllowanceSettingsService, RegulationService, TripApplicationService


def test_migration_can_be_applied_twice(conn):
    apply_sqlite_migration(conn, DEFAULT_MIGRATION_PATH)


def test_settings_default_on_first_use_and_persist_explicit_save(conn):
    service = AllowanceSettingsService(conn)

    assert service.load_for_user("user-1") == RateConfiguration()

    saved = with_defaults(
        {"schema_version": 2, "domestic_daily_allowance": 12000, "overseas_use_preparation_allowance": False}
    )
    service.save_for_user("user-1", saved)
    service.save_for_user("user-1", saved)

    assert service.load_for_user("user-1") == saved
    assert service.load_for_user("user-2") == RateConfiguration()
    count = conn.execute("SELECT COUNT(*) FROM allowance_settings WHERE user_id = ?", ("user-1",)).fetchone()[0]
    assert count == 1


def test_negative_settings_are_not_saved(conn):
    service = AllowanceSettingsService(conn)
    with pytest.raises(ValidationError):
        service.save_for_user("user-1", with_defaults({"domestic_daily_allowance": -5}))
    assert AllowanceSettingsRepository(conn).get_by_user("user-1") is None


def test_flat_settings_row_is_migrated_on_load(conn):
    conn.execute(
        """
        INSERT INTO allowance_settings(user_id, schema_version, domestic_daily_allowance)
        VALUES (?, 1, ?)
        """,
        ("legacy", 9000),
    )

    config = AllowanceSettingsService(conn).load_for_user("legacy")

    assert config.domestic_daily_allowance == 9000
    assert config.overseas_transportation_daily_allowance == 6000
    assert config.overseas_preparation_allowance == 0


def test_submit_persists_estimated_cost(conn):
    AllowanceSettingsService(conn).save_for_user(
        "user-1",
        with_defaults(
            {
                "domestic_daily_allowance": 15000,
                "transportation_daily_allowance": 6000,
                "accommodation_daily_allowance": 16000,
            }
        ),
    )
    service = TripApplicationService(conn)

    application_id = service.submit(
        "user-1",
        TripApplicationDraft(
            purpose="顧客訪問",
            destination="大阪",
            start_date=date(2024, 5, 10),
            end_date=date(2024, 5, 11),
        ),
    )
    row = service.get(application_id)

    assert row["estimated_cost"] == 58000
    assert row["status"] == "pending"
    assert row["title"] == "出張申請 - 大阪"
    assert row["start_date"] == "2024-05-10"


def test_overseas_estimated_cost_leaves_out_preparation_allowance(conn):
    service = TripApplicationService(conn)

    application_id = service.submit(
        "user-1",
        TripApplicationDraft("視察", "シンガポール", date(2024, 6, 1), date(2024, 6, 3), is_overseas=True),
    )

    assert service.get(application_id)["estimated_cost"] == 75000 + 24000 + 40000


def test_submit_requires_mandatory_fields(conn):
    service = TripApplicationService(conn)
    with pytest.raises(ValidationError, match="destination"):
        service.submit(
            "user-1",
            TripApplicationDraft(purpose="x", destination="", start_date=date(2024, 5, 10), end_date=None),
        )


def test_status_updates(conn):
    service = TripApplicationService(conn)
    application_id = service.submit(
        "user-1",
        TripApplicationDraft("会議", "福岡", date(2024, 7, 1), date(2024, 7, 1)),
    )

    approved = service.update_status(application_id, "approved", approved_by="manager-1")
    assert approved["status"] == "approved"
    assert approved["approved_at"] is not None
    assert approved["approved_by"] == "manager-1"

    rejected = service.update_status(application_id, "rejected")
    assert rejected["approved_at"] is None

    with pytest.raises(ValidationError):
        service.update_status(application_id, "archived")
    with pytest.raises(NotFoundError):
        service.update_status(9999, "approved")


def test_attachment_paths_are_scoped_and_sanitized(conn, tmp_path):
    service = TripApplicationService(conn)
    application_id = service.submit(
        "user/1",
        TripApplicationDraft("会議", "札幌", date(2024, 7, 1), date(2024, 7, 2)),
    )

    attachment_id, path = service.attach_file(
        application_id, "../../領収書 1.pdf", b"%PDF-1.4", "application/pdf", tmp_path, timestamp_ms=1700000000000
    )

    assert path == f"business_trip_attachments/user_1/{application_id}/1700000000000_領収書_1.pdf"
    assert (tmp_path / path).read_bytes() == b"%PDF-1.4"
    rows = service.applications.list_attachments(application_id)
    assert [row["id"] for row in rows] == [attachment_id]
    assert rows[0]["file_name"] == "../../領収書 1.pdf"
    assert rows[0]["file_size"] == 8
    assert rows[0]["file_url"] is None


def test_failed_file_write_records_no_attachment(conn, tmp_path):
    service = TripApplicationService(conn)
    application_id = service.submit(
        "user-1",
        TripApplicationDraft("会議", "札幌", date(2024, 7, 1), date(2024, 7, 2)),
    )
    not_a_directory = tmp_path / "uploads"
    not_a_directory.write_text("occupied")

    with pytest.raises(OSError):
        service.attach_file(application_id, "receipt.png", b"png-bytes", "image/png", not_a_directory)

    assert service.applications.list_attachments(application_id) == []


def test_failed_insert_removes_written_file(conn, tmp_path, monkeypatch):
    service = TripApplicationService(conn)
    application_id = service.submit(
        "user-1",
        TripApplicationDraft("会議", "札幌", date(2024, 7, 1), date(2024, 7, 2)),
    )

    def fail_insert(attachment):
        raise sqlite3.IntegrityError("insert failed")

    monkeypatch.setattr(service.applications, "add_attachment", fail_insert)

    with pytest.raises(sqlite3.IntegrityError):
        service.attach_file(application_id, "receipt.png", b"png-bytes", "image/png", tmp_path, timestamp_ms=1)

    assert not (tmp_path / f"business_trip_attachments/user-1/{application_id}/1_receipt.png").exists()
    assert service.applications.list_attachments(application_id) == []


def test_list_applications_for_user(conn):
    service = TripApplicationService(conn)
    first = service.submit("user-1", TripApplicationDraft("会議", "福岡", date(2024, 7, 1), date(2024, 7, 1)))
    second = service.submit("user-1", TripApplicationDraft("研修", "仙台", date(2024, 8, 1), date(2024, 8, 2)))
    service.submit("user-2", TripApplicationDraft("会議", "那覇", date(2024, 7, 1), date(2024, 7, 1)))

    listed = service.list_for_user("user-1")

    assert [row["id"] for row in listed] == [second, first]
    assert service.list_for_user("nobody") == []


def test_regulation_save_load_and_update(conn):
    service = RegulationService(conn)
    doc = default_regulation_document(date(2024, 4, 1))

    regulation_id = service.save("user-1", doc)
    row = service.get_row(regulation_id)

    assert row["regulation_name"] == "株式会社サンプル 出張旅費規程"
    assert row["status"] == "active"
    assert row["regulation_text"] == generate_regulation_text(doc)

    loaded = service.load(regulation_id)
    assert [p.name for p in loaded.positions] == [p.name for p in doc.positions]
    assert generate_regulation_text(loaded) == row["regulation_text"]

    updated = add_position(loaded)
    service.save("user-1", updated, regulation_id=regulation_id)

    reloaded = service.load(regulation_id)
    assert len(reloaded.positions) == 5
    assert reloaded.positions[-1].name == "新しい役職"
    assert service.get_row(regulation_id)["regulation_text"] == generate_regulation_text(reloaded)
    assert [r["id"] for r in service.list_for_user("user-1")] == [regulation_id]


def test_updating_missing_regulation_fails(conn):
    service = RegulationService(conn)
    with pytest.raises(NotFoundError):
        service.save("user-1", default_regulation_document(date(2024, 4, 1)), regulation_id=42)
    assert conn.execute("SELECT COUNT(*) FROM regulation_positions").fetchone()[0] == 0


def test_loading_applies_fallbacks_for_empty_columns(conn):
    conn.execute(
        """
        INSERT INTO travel_expense_regulations(user_id, regulation_name, implementation_date)
        VALUES ('user-1', 'empty', '2024-04-01')
        """
    )
    regulation_id = conn.execute("SELECT id FROM travel_expense_regulations").fetchone()[0]

    doc = RegulationService(conn).load(regulation_id)

    assert doc.distance_threshold == 50
    assert doc.company_info.revision == 1
    assert doc.company_info.name == ""
    assert doc.positions == ()
