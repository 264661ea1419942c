# app/services/ota/ota_service.py
from sqlmodel import Session

from app.db.repositories.ota_repository import OTARepository
from app.services.ota.deployment_planner import DeploymentPlanner
from app.services.ota.device_update_api import DeviceUpdateAPI
from app.services.ota.device_update_tracker import DeviceUpdateTracker
from app.services.ota.release_manager import ReleaseManager
from app.services.ota.rollback_engine import RollbackEngine
from app.services.ota.rollout_controller import RolloutController
from app.services.ota.runtime import OTARuntime


class OTAService:
    """Wires the OTA components around one database session"""

    def __init__(self, session: Session, runtime: OTARuntime):
        self.session = session
        self.runtime = runtime
        self.repository = OTARepository(session)

        self.releases = ReleaseManager(self.repository, runtime)
        self.tracker = DeviceUpdateTracker(self.repository)
        self.planner = DeploymentPlanner(self.repository, runtime)
        self.rollback = RollbackEngine(self.repository, runtime, self.planner)
        self.controller = RolloutController(
            self.repository,
            runtime,
            self.tracker,
            on_deployment_failed=self.rollback.rollback_deployment,
        )
        self.devices = DeviceUpdateAPI(self.repository, runtime, self.tracker, self.controller)
