"""API route handlers for the sideloader endpoints."""

import logging
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from sideloader.api.models import (
    BundleInstallRequest,
    ConnectRequest,
    ErrorResponse,
    InstallRequest,
    ProgressResponse,
    SuccessResponse,
)
from sideloader.errors import InstallerError, describe_error
from sideloader.models.device import PackageSource, SelectedFile
from sideloader.models.status import StageEnum
from sideloader.services.bundle_resolver import select_folder
from sideloader.services.orchestrator import InstallOrchestrator

router = APIRouter(prefix="/api/v1.0")
logger = logging.getLogger("sideloader.api")


def _orchestrator(request: Request) -> InstallOrchestrator:
    return request.app.state.orchestrator


def _error(code: int, msg: str, stage: StageEnum = None) -> JSONResponse:
    body = ErrorResponse(code=code, msg=msg, stage=stage)
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


def _success(data=None) -> JSONResponse:
    return JSONResponse(status_code=200, content=SuccessResponse(data=data).model_dump(mode="json"))


def _check_ready(orchestrator: InstallOrchestrator):
    """Return an error response if a new attempt cannot start, else None."""
    status = orchestrator.state_manager.get_status()
    if status.stage.is_active:
        return _error(409, f"Operation already in progress: {status.stage.value}", status.stage)
    if not orchestrator.is_connected:
        return _error(428, "NOT_CONNECTED: No device connected. Connect first.")
    return None


def _mark_queued(orchestrator: InstallOrchestrator) -> None:
    """Claim the attempt slot; background tasks start only after the response."""
    orchestrator.state_manager.update_status(
        stage=StageEnum.PREPARING_SOURCE, progress=0, message="Queued…"
    )


@router.post("/connect", response_model=SuccessResponse)
async def post_connect(body: ConnectRequest, request: Request):
    """POST /api/v1.0/connect - Connect (or reconnect) to a headset.

    Returns:
        SuccessResponse with serial, manufacturer and model, or code 502
    """
    orchestrator = _orchestrator(request)
    status = orchestrator.state_manager.get_status()
    if status.stage.is_active:
        return _error(409, f"Operation already in progress: {status.stage.value}", status.stage)

    try:
        info = await orchestrator.connect(body.serial)
    except InstallerError as e:
        logger.error(f"Connect failed: {e}")
        return _error(502, describe_error(e))
    return _success(info.model_dump(mode="json"))


@router.post("/disconnect", response_model=SuccessResponse)
async def post_disconnect(request: Request):
    """POST /api/v1.0/disconnect - Drop the current session (idempotent)."""
    await _orchestrator(request).disconnect()
    return _success()


@router.get("/device", response_model=SuccessResponse)
async def get_device(request: Request):
    """GET /api/v1.0/device - Connection status and device identity."""
    orchestrator = _orchestrator(request)
    info = orchestrator.device_info if orchestrator.is_connected else None
    return _success({
        "connected": orchestrator.is_connected,
        "device": info.model_dump(mode="json") if info else None,
    })


@router.post("/install", response_model=SuccessResponse)
async def post_install(body: InstallRequest, request: Request, background_tasks: BackgroundTasks):
    """POST /api/v1.0/install - Start a single-package install in the background.

    Source precedence: ``apk_path``, ``url``, then the release feed.
    """
    orchestrator = _orchestrator(request)
    rejected = _check_ready(orchestrator)
    if rejected:
        return rejected

    source = PackageSource(
        path=Path(body.apk_path) if body.apk_path else None,
        url=body.url,
        owner=body.owner,
        repo=body.repo,
    )
    _mark_queued(orchestrator)
    background_tasks.add_task(_install_workflow, orchestrator, source)
    return _success()


@router.post("/install/bundle", response_model=SuccessResponse)
async def post_install_bundle(
    body: BundleInstallRequest, request: Request, background_tasks: BackgroundTasks
):
    """POST /api/v1.0/install/bundle - Start a bundle install in the background."""
    orchestrator = _orchestrator(request)
    rejected = _check_ready(orchestrator)
    if rejected:
        return rejected

    if body.folder:
        try:
            selected = select_folder(Path(body.folder).expanduser())
        except InstallerError:
            return _error(404, f"Bundle folder not found: {body.folder}")
    else:
        selected = [
            SelectedFile(path=Path(f["path"]), relative_path=f.get("relative_path", ""))
            for f in body.files
            if f.get("path")
        ]

    _mark_queued(orchestrator)
    background_tasks.add_task(_bundle_workflow, orchestrator, selected)
    return _success()


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(request: Request):
    """GET /api/v1.0/progress - Status of the current or last attempt.

    Response format (failed stage):
        {
            "code": 500,
            "msg": "Install failed: FILE_NOT_FOUND: ...",
            "data": {"stage": "failed", "progress": 0, "message": "Install failed", "error": "..."}
        }
    """
    status = _orchestrator(request).state_manager.get_status()
    if status.stage == StageEnum.FAILED:
        msg = f"Install failed: {status.error}" if status.error else "Install failed"
        return ProgressResponse(code=500, msg=msg, data=status)
    return ProgressResponse(code=200, msg="success", data=status)


@router.get("/log", response_model=SuccessResponse)
async def get_log(request: Request):
    """GET /api/v1.0/log - User-visible attempt log lines."""
    return _success(_orchestrator(request).state_manager.get_log())


async def _install_workflow(orchestrator: InstallOrchestrator, source: PackageSource) -> None:
    """Background task for single-package installs."""
    try:
        await orchestrator.install_package(source)
    except Exception as e:
        # Already logged and recorded in status by the orchestrator
        logger.debug(f"Install workflow ended with error: {e}")


async def _bundle_workflow(orchestrator: InstallOrchestrator, selected: list[SelectedFile]) -> None:
    """Background task for bundle installs."""
    try:
        await orchestrator.install_bundle(selected)
    except Exception as e:
        logger.debug(f"Bundle workflow ended with error: {e}")
