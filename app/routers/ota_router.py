from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    UploadFile,
    File,
    Form,
    Query,
    Request,
    status
)
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlmodel import Session
from typing import Optional
import logging
import os
import secrets

from app.core.config import settings
from app.core.errors import IntegrityError, OTAError, StorageError
from app.db.session import get_session
from app.services.ota.ota_service import OTAService
from app.services.ota.storage import LocalStorageBackend
from app.schemas.ota import (
    CreateDeploymentRequest,
    DeploymentListResponse,
    DeploymentResponse,
    DeploymentStatusReport,
    DeviceUpdateListResponse,
    DeviceUpdateResponse,
    FirmwareReleaseResponse,
    FirmwareUpdate,
    MessageResponse,
    ReleaseListResponse,
    UpdateStatusReport,
    VerifyReleaseResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# HTTP Basic Auth for operator endpoints
security = HTTPBasic()


def get_ota_service(request: Request, session: Session = Depends(get_session)) -> OTAService:
    """Dependency to get the OTA service for this request"""
    return OTAService(session, request.app.state.ota_runtime)


def admin_auth(credentials: HTTPBasicCredentials = Depends(security)) -> bool:
    """Admin authentication dependency"""
    correct_username = secrets.compare_digest(credentials.username, settings.ADMIN_USER)
    correct_password = secrets.compare_digest(credentials.password, settings.ADMIN_PASS)

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return True


@router.get("/health")
def health_check(request: Request):
    runtime = request.app.state.ota_runtime
    return {
        "status": "healthy" if runtime.storage.running else "degraded",
        "service": settings.APP_NAME,
    }


# Releases

@router.post("/releases", response_model=FirmwareReleaseResponse, status_code=status.HTTP_201_CREATED)
async def create_release(
    template_id: str = Form(..., description="Template the firmware was built from"),
    version: str = Form(..., description="Semantic version, e.g., '1.0.4'"),
    channel: str = Form(..., description="'stable', 'beta' or 'alpha'"),
    binary: UploadFile = File(..., description="Firmware binary file"),
    release_notes: Optional[str] = Form(None, description="Release notes"),
    created_by: Optional[str] = Form(None, description="Operator creating the release"),
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    """
    Create a signed firmware release (Admin only)

    The binary is hashed (SHA256), signed and stored; the response carries
    the hash and signature devices use to check their download.
    """
    contents = await binary.read()

    if len(contents) > settings.FIRMWARE_MAX_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size: {settings.FIRMWARE_MAX_SIZE} bytes"
        )

    try:
        release = await run_in_threadpool(
            ota_service.releases.create_release,
            template_id,
            version,
            channel,
            contents,
            release_notes,
            created_by,
        )
    except OTAError:
        raise
    except Exception as e:
        logger.error(f"Error creating release: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create release")

    return FirmwareReleaseResponse.model_validate(release)


@router.get("/releases", response_model=ReleaseListResponse)
def list_releases(
    template_id: Optional[str] = None,
    channel: Optional[str] = None,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    releases = ota_service.releases.list_releases(template_id, channel)
    return ReleaseListResponse(
        count=len(releases),
        releases=[FirmwareReleaseResponse.model_validate(r) for r in releases]
    )


@router.get("/releases/{release_id}", response_model=FirmwareReleaseResponse)
def get_release(
    release_id: str,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    return FirmwareReleaseResponse.model_validate(ota_service.releases.get_release(release_id))


@router.delete("/releases/{release_id}", response_model=MessageResponse)
def delete_release(
    release_id: str,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    ota_service.releases.delete_release(release_id)
    return MessageResponse(message="Release deleted successfully")


@router.post("/releases/{release_id}/verify", response_model=VerifyReleaseResponse)
def verify_release(
    release_id: str,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    """
    Re-hash the stored binary and check its signature (Admin only)

    A failed check is a verification result, not a request error: it comes
    back as ``verified: false`` with the reason in ``message``.
    """
    try:
        ota_service.releases.verify_release(release_id)
    except IntegrityError as e:
        return VerifyReleaseResponse(verified=False, message=e.message)
    return VerifyReleaseResponse(verified=True, message="Release signature verified successfully")


# Deployments

@router.post("/deployments", response_model=DeploymentResponse, status_code=status.HTTP_201_CREATED)
def create_deployment(
    body: CreateDeploymentRequest,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    try:
        deployment = ota_service.planner.deploy_release(body.release_id, body.config)
    except OTAError:
        raise
    except Exception as e:
        logger.error(f"Error creating deployment: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create deployment")

    return DeploymentResponse.model_validate(deployment)


@router.get("/deployments", response_model=DeploymentListResponse)
def list_deployments(
    release_id: Optional[str] = None,
    active: bool = False,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    if active:
        deployments = ota_service.repository.get_active_deployments()
    else:
        deployments = ota_service.repository.list_deployments(release_id)
    return DeploymentListResponse(
        count=len(deployments),
        deployments=[DeploymentResponse.model_validate(d) for d in deployments]
    )


@router.get("/deployments/{deployment_id}")
def get_deployment(
    deployment_id: str,
    status_report: bool = Query(False, alias="status"),
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    """
    Get a deployment (Admin only)

    With ``?status=true`` returns the aggregated progress report instead.
    """
    if status_report:
        report: DeploymentStatusReport = ota_service.controller.get_deployment_status(deployment_id)
        return report
    deployment = ota_service.repository.get_deployment(deployment_id)
    return DeploymentResponse.model_validate(deployment)


@router.get("/deployments/{deployment_id}/devices", response_model=DeviceUpdateListResponse)
def list_deployment_devices(
    deployment_id: str,
    update_status: Optional[str] = Query(None, alias="status"),
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    ota_service.repository.get_deployment(deployment_id)
    if update_status:
        updates = ota_service.tracker.get_device_updates_by_status(deployment_id, update_status)
    else:
        updates = ota_service.tracker.list_device_updates(deployment_id)
    return DeviceUpdateListResponse(
        count=len(updates),
        updates=[DeviceUpdateResponse.model_validate(u) for u in updates]
    )


@router.put("/deployments/{deployment_id}/activate", response_model=MessageResponse)
def activate_deployment(
    deployment_id: str,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    ota_service.controller.activate_deployment(deployment_id)
    return MessageResponse(message="Deployment activated successfully", deployment_id=deployment_id)


@router.put("/deployments/{deployment_id}/pause", response_model=MessageResponse)
def pause_deployment(
    deployment_id: str,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    ota_service.planner.pause_deployment(deployment_id)
    return MessageResponse(message="Deployment paused successfully", deployment_id=deployment_id)


@router.put("/deployments/{deployment_id}/resume", response_model=MessageResponse)
def resume_deployment(
    deployment_id: str,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    ota_service.planner.resume_deployment(deployment_id)
    return MessageResponse(message="Deployment resumed successfully", deployment_id=deployment_id)


@router.post("/deployments/{deployment_id}/rollback", response_model=DeploymentResponse)
def rollback_deployment(
    deployment_id: str,
    _: bool = Depends(admin_auth),
    ota_service: OTAService = Depends(get_ota_service)
):
    """Fail this deployment and publish the previous release to its devices (Admin only)"""
    rollback = ota_service.rollback.rollback_deployment(deployment_id)
    return DeploymentResponse.model_validate(rollback)


# Device-facing

@router.get("/updates/{device_id}", response_model=FirmwareUpdate)
def get_update_for_device(
    device_id: str,
    ota_service: OTAService = Depends(get_ota_service)
):
    """
    Pending update for a device

    Answers 404 with code ``NO_PENDING_UPDATE`` when there is nothing to
    install.
    """
    return ota_service.devices.get_update_for_device(device_id)


@router.post("/updates/status", response_model=MessageResponse)
def report_update_status(
    report: UpdateStatusReport,
    ota_service: OTAService = Depends(get_ota_service)
):
    """
    Report OTA update status from a device:
    - downloading / installing with a progress percentage
    - completed
    - failed with an error message
    """
    ota_service.devices.report_update_status(report)
    return MessageResponse(message="Update status reported successfully")


@router.get("/binaries/{path:path}")
def download_binary(
    path: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
):
    """Serve a stored firmware binary behind a signed, expiring URL"""
    backend = request.app.state.ota_runtime.storage_backend
    if not isinstance(backend, LocalStorageBackend):
        raise HTTPException(status_code=404, detail="Binary downloads are served by the storage backend")

    if not backend.verify_url_signature(path, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired download link")

    try:
        file_path = backend.resolve_path(path)
    except StorageError:
        raise HTTPException(status_code=404, detail="Firmware file not found")

    if not os.path.exists(file_path):
        raise HTTPException(status_code=404, detail="Firmware file not found")

    return FileResponse(
        file_path,
        media_type="application/octet-stream",
        filename=os.path.basename(file_path),
    )
