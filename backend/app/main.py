from __future__ import annotations

import sqlite3
import threading
from datetime import date
from pathlib import Path
from typing import Iterator, Literal, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, Field

from backend.app.config import load_config
from backend.services.excel_export import RegulationExcelExportService
from ryohi.core import NotFoundError, TripAllowanceRequest, ValidationError, compute_allowance
from ryohi.db import apply_sqlite_migration, connect_sqlite
from ryohi.logging_config import configure_logging, get_logger
from ryohi.models import TripApplicationDraft
from ryohi.rates import with_defaults
from ryohi.regulation import (
    DEFAULT_DISTANCE_THRESHOLD_KM,
    CompanyInfo,
    PositionRate,
    RegulationDocument,
    export_filename,
    generate_regulation_text,
    regulation_name,
)
from ryohi.services import AllowanceSettingsService, RegulationService, TripApplicationService
from ryohi.ui import render_regulation_print_html

config = load_config()
configure_logging(level=config.log_level)
logger = get_logger("backend.app")

app = FastAPI(title="Ryohi API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_schema_lock = threading.Lock()
_schema_ready = False


def _ensure_schema() -> None:
    global _schema_ready
    with _schema_lock:
        if _schema_ready:
            return
        Path(config.database_path).parent.mkdir(parents=True, exist_ok=True)
        conn = connect_sqlite(config.database_path)
        try:
            apply_sqlite_migration(conn, config.migration_path)
        finally:
            conn.close()
        _schema_ready = True
        logger.info("Database schema ready at %s", config.database_path)


def get_connection() -> Iterator[sqlite3.Connection]:
    """Open one connection per request; transactions never span requests."""
    if config.database_path == ":memory:":
        # An in-memory database lives only as long as its connection.
        conn = connect_sqlite(check_same_thread=False)
        apply_sqlite_migration(conn, config.migration_path)
    else:
        _ensure_schema()
        conn = connect_sqlite(config.database_path, check_same_thread=False)
    try:
        yield conn
    finally:
        conn.close()


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def lookup_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


class RatesPayload(BaseModel):
    """Allowance settings in either the flat or the split layout."""

    schema_version: Optional[int] = None
    domestic_daily_allowance: Optional[int] = None
    overseas_daily_allowance: Optional[int] = None
    transportation_daily_allowance: Optional[int] = None
    accommodation_daily_allowance: Optional[int] = None
    use_transportation_allowance: Optional[bool] = None
    use_accommodation_allowance: Optional[bool] = None
    domestic_transportation_daily_allowance: Optional[int] = None
    domestic_accommodation_daily_allowance: Optional[int] = None
    overseas_transportation_daily_allowance: Optional[int] = None
    overseas_accommodation_daily_allowance: Optional[int] = None
    overseas_preparation_allowance: Optional[int] = None
    domestic_use_transportation_allowance: Optional[bool] = None
    domestic_use_accommodation_allowance: Optional[bool] = None
    overseas_use_transportation_allowance: Optional[bool] = None
    overseas_use_accommodation_allowance: Optional[bool] = None
    overseas_use_preparation_allowance: Optional[bool] = None


class EstimateRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_overseas: bool = False
    user_id: Optional[str] = None
    rates: Optional[RatesPayload] = None


class TripApplicationCreate(BaseModel):
    user_id: str
    purpose: str
    destination: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_overseas: bool = False


class StatusUpdate(BaseModel):
    status: Literal["pending", "approved", "rejected", "cancelled"]
    approved_by: Optional[str] = None


class CompanyInfoPayload(BaseModel):
    name: str
    address: str = ""
    representative: str = ""
    revision: int = 1


class PositionPayload(BaseModel):
    name: str
    domestic_daily_allowance: int = 0
    domestic_accommodation: int = 0
    domestic_transportation: int = 0
    overseas_daily_allowance: int = 0
    overseas_accommodation: int = 0
    overseas_preparation: int = 0
    overseas_transportation: int = 0


class RegulationPayload(BaseModel):
    company_info: CompanyInfoPayload
    implementation_date: date
    distance_threshold: int = DEFAULT_DISTANCE_THRESHOLD_KM
    is_transportation_real_expense: bool = False
    is_accommodation_real_expense: bool = False
    positions: list[PositionPayload] = Field(default_factory=list)

    def to_document(self) -> RegulationDocument:
        return RegulationDocument(
            company_info=CompanyInfo(**self.company_info.model_dump()),
            implementation_date=self.implementation_date,
            distance_threshold=self.distance_threshold,
            is_transportation_real_expense=self.is_transportation_real_expense,
            is_accommodation_real_expense=self.is_accommodation_real_expense,
            positions=tuple(PositionRate(**position.model_dump()) for position in self.positions),
        )


class RegulationSave(RegulationPayload):
    user_id: str


@app.post("/allowances/estimate")
def estimate_allowance(payload: EstimateRequest, conn: sqlite3.Connection = Depends(get_connection)):
    if payload.rates is not None:
        rates = with_defaults(payload.rates.model_dump(exclude_none=True))
    elif payload.user_id:
        rates = AllowanceSettingsService(conn).load_for_user(payload.user_id)
    else:
        rates = with_defaults()

    breakdown = compute_allowance(
        TripAllowanceRequest(payload.start_date, payload.end_date, payload.is_overseas, rates)
    )
    if breakdown is None:
        return {"status": "insufficient_input", "breakdown": None}
    return {"status": "ok", "breakdown": breakdown.to_dict()}


@app.get("/users/{user_id}/allowance-settings")
def get_allowance_settings(user_id: str, conn: sqlite3.Connection = Depends(get_connection)):
    return AllowanceSettingsService(conn).load_for_user(user_id).to_row()


@app.put("/users/{user_id}/allowance-settings")
def save_allowance_settings(
    user_id: str, payload: RatesPayload, conn: sqlite3.Connection = Depends(get_connection)
):
    rates = with_defaults(payload.model_dump(exclude_none=True), validate=True)
    return AllowanceSettingsService(conn).save_for_user(user_id, rates).to_row()


@app.post("/trip-applications", status_code=201)
def create_trip_application(
    payload: TripApplicationCreate, conn: sqlite3.Connection = Depends(get_connection)
):
    service = TripApplicationService(conn)
    application_id = service.submit(
        payload.user_id,
        TripApplicationDraft(
            purpose=payload.purpose,
            destination=payload.destination,
            start_date=payload.start_date,
            end_date=payload.end_date,
            is_overseas=payload.is_overseas,
        ),
    )
    return dict(service.get(application_id))


@app.get("/users/{user_id}/trip-applications")
def list_trip_applications(user_id: str, conn: sqlite3.Connection = Depends(get_connection)):
    return TripApplicationService(conn).list_for_user(user_id)


@app.get("/trip-applications/{application_id}")
def get_trip_application(application_id: int, conn: sqlite3.Connection = Depends(get_connection)):
    service = TripApplicationService(conn)
    application = dict(service.get(application_id))
    application["attachments"] = [
        dict(row) for row in service.applications.list_attachments(application_id)
    ]
    return application


@app.patch("/trip-applications/{application_id}/status")
def update_trip_application_status(
    application_id: int, payload: StatusUpdate, conn: sqlite3.Connection = Depends(get_connection)
):
    row = TripApplicationService(conn).update_status(application_id, payload.status, payload.approved_by)
    return dict(row)


@app.post("/trip-applications/{application_id}/attachments")
def upload_attachments(
    application_id: int,
    files: list[UploadFile] = File(...),
    conn: sqlite3.Connection = Depends(get_connection),
):
    service = TripApplicationService(conn)
    uploaded = []
    for file in files:
        content = file.file.read()
        attachment_id, file_path = service.attach_file(
            application_id, file.filename or "upload.bin", content, file.content_type, config.upload_root
        )
        uploaded.append(
            {
                "id": attachment_id,
                "name": file.filename,
                "path": file_path,
                "content_type": file.content_type,
                "size": len(content),
            }
        )

    return {"application_id": application_id, "uploaded": uploaded}


@app.post("/regulations/preview")
def preview_regulation(payload: RegulationPayload):
    doc = payload.to_document()
    return {
        "regulation_name": regulation_name(doc),
        "filename": export_filename(doc),
        "regulation_text": generate_regulation_text(doc),
    }


@app.post("/regulations", status_code=201)
def create_regulation(payload: RegulationSave, conn: sqlite3.Connection = Depends(get_connection)):
    service = RegulationService(conn)
    regulation_id = service.save(payload.user_id, payload.to_document())
    return _regulation_response(service, regulation_id)


@app.put("/regulations/{regulation_id}")
def update_regulation(
    regulation_id: int, payload: RegulationSave, conn: sqlite3.Connection = Depends(get_connection)
):
    service = RegulationService(conn)
    service.save(payload.user_id, payload.to_document(), regulation_id=regulation_id)
    return _regulation_response(service, regulation_id)


@app.get("/regulations/{regulation_id}")
def get_regulation(regulation_id: int, conn: sqlite3.Connection = Depends(get_connection)):
    return _regulation_response(RegulationService(conn), regulation_id)


@app.get("/regulations/{regulation_id}/export.txt")
def export_regulation_text(regulation_id: int, conn: sqlite3.Connection = Depends(get_connection)):
    service = RegulationService(conn)
    row = service.get_row(regulation_id)
    doc = service.load(regulation_id)
    return Response(
        content=row["regulation_text"] or "",
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(export_filename(doc))}"},
    )


@app.get("/regulations/{regulation_id}/export.html", response_class=HTMLResponse)
def export_regulation_html(regulation_id: int, conn: sqlite3.Connection = Depends(get_connection)):
    row = RegulationService(conn).get_row(regulation_id)
    return HTMLResponse(render_regulation_print_html(row["regulation_text"] or ""))


@app.get("/regulations/{regulation_id}/export.xlsx")
def export_regulation_xlsx(regulation_id: int, conn: sqlite3.Connection = Depends(get_connection)):
    doc = RegulationService(conn).load(regulation_id)
    export_service = RegulationExcelExportService(config.regulation_export_mapping)
    export_path = export_service.generate_export(
        doc, config.export_dir / f"regulation-{regulation_id}.xlsx"
    )

    return FileResponse(
        export_path,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=export_filename(doc, "xlsx"),
    )


@app.get("/health")
def health():
    return {"status": "ok"}


def _regulation_response(service: RegulationService, regulation_id: int) -> dict:
    regulation = dict(service.get_row(regulation_id))
    regulation["positions"] = [
        dict(row) for row in service.regulations.list_positions(regulation_id)
    ]
    return regulation
