# app/services/ota/notification_service.py
import logging
from typing import Optional

from app.core.config import settings

try:
    import firebase_admin
    from firebase_admin import credentials, messaging
except ImportError:
    firebase_admin = None
    credentials = None
    messaging = None

logger = logging.getLogger(__name__)


class NotificationService:
    """Firebase push notifications to the operator topic about rollout events"""

    def __init__(self, topic: Optional[str] = None):
        self.topic = topic or settings.FIREBASE_TOPIC_OPERATORS
        self.enabled = self._init_firebase()

    def _init_firebase(self) -> bool:
        """Initialize Firebase Admin SDK"""
        if firebase_admin is None:
            logger.warning("firebase-admin is not installed; notifications disabled")
            return False

        try:
            # Check if already initialized
            if firebase_admin._apps:  # type: ignore[attr-defined]
                logger.info("Firebase app already initialized")
                return True

            if not settings.FIREBASE_CLIENT_EMAIL or not settings.FIREBASE_PRIVATE_KEY or not settings.FIREBASE_PROJECT_ID:
                logger.warning("Firebase credentials not configured; notifications will be disabled")
                return False

            cred = credentials.Certificate({
                "type": "service_account",
                "project_id": settings.FIREBASE_PROJECT_ID,
                "private_key": settings.FIREBASE_PRIVATE_KEY,
                "client_email": settings.FIREBASE_CLIENT_EMAIL,
                "token_uri": "https://oauth2.googleapis.com/token",
            })

            firebase_admin.initialize_app(cred, {
                "projectId": settings.FIREBASE_PROJECT_ID,
            })

            logger.info("Firebase app initialized for notifications")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize Firebase app: {e}")
            return False

    def send_release_notification(self, template_id: str, version: str, channel: str, release_notes: Optional[str] = None) -> bool:
        """Announce a newly published release"""
        return self.send_notification_to_topic(
            title=f"Firmware {version} released",
            body=release_notes or f"New {channel} firmware for template {template_id}.",
            data={
                "type": "release_created",
                "template_id": template_id,
                "version": version,
                "channel": channel,
            },
        )

    def send_deployment_failed_notification(self, deployment_id: str, failure_count: int, total_devices: int) -> bool:
        return self.send_notification_to_topic(
            title="Deployment failed",
            body=f"{failure_count} of {total_devices} devices failed to update.",
            data={"type": "deployment_failed", "deployment_id": deployment_id},
        )

    def send_rollback_notification(self, deployment_id: str, rollback_deployment_id: str, version: str) -> bool:
        return self.send_notification_to_topic(
            title=f"Rolled back to {version}",
            body=f"Deployment {deployment_id} was rolled back.",
            data={
                "type": "deployment_rolled_back",
                "deployment_id": deployment_id,
                "rollback_deployment_id": rollback_deployment_id,
            },
        )

    def send_notification_to_topic(self, title: str, body: str, data: Optional[dict] = None) -> bool:
        """Send notification to the configured topic"""
        if not self.enabled or messaging is None:
            logger.debug(f"Notifications disabled, skipping: {title}")
            return False

        try:
            message = messaging.Message(
                notification=messaging.Notification(
                    title=title,
                    body=body
                ),
                topic=self.topic,
                data={k: str(v) for k, v in (data or {}).items()}
            )

            response = messaging.send(message)
            logger.info(f"Notification sent to topic {self.topic}: {response}")
            return True

        except Exception as e:
            logger.error(f"Failed to send notification: {e}")
            return False
