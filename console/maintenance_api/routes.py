"""
API routes for the JOAP maintenance API.

Each route forwards to the MaintenanceGateway and renders its
GatewayResult in the response envelope:

    {"success": true, "data": ...}
    {"success": false, "error": "...", "code": "...", "details": {...}}

The acting administrator is taken from the X-Actor header.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from joap.backup_engine.errors import (
    ConfirmationRequired,
    InvalidRequest,
    LastAdminInvariantViolation,
    MaintenanceError,
    NotFound,
    StorageFailure,
)
from joap.backup_engine.gateway import Download, GatewayResult, MaintenanceGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["JOAP Maintenance"])


# --- Request Models ---


class AutoBackupSettingsUpdate(BaseModel):
    """Partial auto-backup settings update.

    Values are checked by the scheduler so that every invalid value is
    reported as INVALID_SETTINGS.
    """

    model_config = ConfigDict(populate_by_name=True)

    enabled: Any = Field(None, description="Turn scheduled backups on or off")
    interval_value: Any = Field(None, alias="intervalValue", description="Interval length")
    interval_unit: Any = Field(None, alias="intervalUnit", description="hours, days or weeks")


# --- Dependencies ---


def get_gateway(request: Request) -> MaintenanceGateway:
    """Get the gateway from the engine in app state."""
    return request.app.state.engine.gateway


def get_actor(request: Request, x_actor: str | None = Header(None, alias="X-Actor")) -> str:
    """Acting administrator from the X-Actor header."""
    return x_actor or request.app.state.settings.default_actor


# --- Envelope ---


def status_for(error: MaintenanceError) -> int:
    """Map a typed failure to an HTTP status."""
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, ConfirmationRequired):
        return 428
    if isinstance(error, LastAdminInvariantViolation):
        return 409
    if isinstance(error, StorageFailure):
        return 503
    return 400


def envelope(result: GatewayResult, status_code: int = 200) -> JSONResponse:
    """Render a GatewayResult as a JSON envelope."""
    if not result.success:
        return JSONResponse(
            status_code=status_for(result.error),
            content={"success": False, **result.error.to_dict()},
        )
    data = result.data
    if hasattr(data, "to_dict"):
        data = data.to_dict()
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


def attachment(result: GatewayResult) -> Response:
    """Render a successful Download as a file attachment."""
    if not result.success:
        return envelope(result)
    download: Download = result.data
    return Response(
        content=download.content,
        media_type=download.content_type,
        headers={"Content-Disposition": f'attachment; filename="{download.filename}"'},
    )


def _upload_too_large(max_bytes: int, size_bytes: int) -> JSONResponse:
    return envelope(
        GatewayResult.fail(
            InvalidRequest(f"Upload exceeds {max_bytes} bytes", details={"size_bytes": size_bytes})
        )
    )


# --- Routes ---


@router.get("/health")
async def health(request: Request):
    """Liveness and scheduler state."""
    engine = request.app.state.engine
    return {
        "status": "healthy" if engine.running else "stopped",
        "service": "joap-maintenance",
        "scheduler": engine.scheduler.state.value,
    }


@router.post("/backup")
async def create_backup(
    gateway: MaintenanceGateway = Depends(get_gateway),
    actor: str = Depends(get_actor),
):
    """Create a manual backup and record it in history."""
    return envelope(await gateway.create_manual_backup(actor), status_code=201)


@router.get("/backup/export")
async def export_backup(
    gateway: MaintenanceGateway = Depends(get_gateway),
    actor: str = Depends(get_actor),
):
    """Download the current data as a snapshot without recording history."""
    return attachment(await gateway.export_snapshot(actor))


@router.post("/auto-backup/trigger")
async def trigger_auto_backup(
    gateway: MaintenanceGateway = Depends(get_gateway),
    actor: str = Depends(get_actor),
):
    """Run an auto backup now; the schedule is unchanged."""
    return envelope(await gateway.trigger_now(actor), status_code=201)


@router.get("/auto-backup/settings")
async def get_auto_backup_settings(gateway: MaintenanceGateway = Depends(get_gateway)):
    """Current auto-backup settings."""
    return envelope(await gateway.get_auto_backup_settings())


@router.patch("/auto-backup/settings")
async def update_auto_backup_settings(
    update: AutoBackupSettingsUpdate,
    gateway: MaintenanceGateway = Depends(get_gateway),
    actor: str = Depends(get_actor),
):
    """Update auto-backup settings; omitted fields keep their value."""
    return envelope(
        await gateway.set_auto_backup_settings(
            actor,
            enabled=update.enabled,
            interval_value=update.interval_value,
            interval_unit=update.interval_unit,
        )
    )


@router.get("/backup/history")
async def list_backup_history(
    request: Request,
    page: int = Query(1, description="1-based page number"),
    page_size: int | None = Query(None, alias="pageSize", description="Backups per page"),
    gateway: MaintenanceGateway = Depends(get_gateway),
):
    """Backup history, newest first."""
    settings = request.app.state.settings
    size = settings.default_page_size if page_size is None else page_size
    if not 1 <= size <= settings.max_page_size:
        return envelope(
            GatewayResult.fail(
                InvalidRequest(
                    f"pageSize must be between 1 and {settings.max_page_size}",
                    details={"pageSize": size},
                )
            )
        )
    return envelope(await gateway.list_history(page=page, page_size=size))


@router.get("/backup/download/{backup_id}")
async def download_backup(
    backup_id: str,
    gateway: MaintenanceGateway = Depends(get_gateway),
    actor: str = Depends(get_actor),
):
    """Download a stored backup."""
    return attachment(await gateway.download(backup_id, actor))


@router.post("/backup/upload")
async def upload_backup(
    request: Request,
    confirmed: bool = Query(False, description="Must be true; restore replaces all data"),
    gateway: MaintenanceGateway = Depends(get_gateway),
    actor: str = Depends(get_actor),
):
    """Restore from an uploaded snapshot (raw JSON body)."""
    if not confirmed:
        # Rejected before the body is read
        return envelope(await gateway.upload_and_restore(b"", confirmed=False, actor=actor))

    max_bytes = request.app.state.settings.max_upload_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        return _upload_too_large(max_bytes, int(declared))

    # Content-Length may be absent or wrong; count what actually arrives
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            return _upload_too_large(max_bytes, received)
        chunks.append(chunk)
    data = b"".join(chunks)
    return envelope(await gateway.upload_and_restore(data, confirmed=True, actor=actor))


@router.post("/backup/{backup_id}/restore")
async def restore_backup(
    backup_id: str,
    confirmed: bool = Query(False, description="Must be true; restore replaces all data"),
    gateway: MaintenanceGateway = Depends(get_gateway),
    actor: str = Depends(get_actor),
):
    """Restore from a backup in history."""
    return envelope(
        await gateway.restore_from_history(backup_id, confirmed=confirmed, actor=actor)
    )
