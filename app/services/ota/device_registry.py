# app/services/ota/device_registry.py
import logging
from typing import List, Protocol

import requests

from app.core.errors import DeviceRegistryError

logger = logging.getLogger(__name__)


class DeviceRegistry(Protocol):
    def list_devices(self, template_id: str, ota_channel: str) -> List[str]:
        """IDs of all devices running ``template_id`` subscribed to ``ota_channel``"""
        ...


class HTTPDeviceRegistry:
    """
    Client for the device service's listing endpoint.

    Pages through ``GET /api/v1/devices`` which answers
    ``{"devices": [...], "total": n, "limit": l, "offset": o}``.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, page_size: int = 200):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size

    def list_devices(self, template_id: str, ota_channel: str) -> List[str]:
        url = f"{self.base_url}/api/v1/devices"
        device_ids: List[str] = []
        offset = 0

        while True:
            params = {
                "template_id": template_id,
                "ota_channel": ota_channel,
                "limit": self.page_size,
                "offset": offset,
            }
            try:
                response = requests.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                payload = response.json()
            except requests.exceptions.RequestException as e:
                logger.error(f"Error listing devices from registry: {e}")
                raise DeviceRegistryError(f"Failed to list devices: {e}") from e
            except ValueError as e:
                raise DeviceRegistryError("Device registry returned invalid JSON") from e

            devices = payload.get("devices") or []
            device_ids.extend(d["device_id"] for d in devices if d.get("device_id"))

            total = payload.get("total", 0)
            offset += len(devices)
            if not devices or offset >= total:
                break

        logger.info(f"Device registry returned {len(device_ids)} devices for template={template_id}, channel={ota_channel}")
        return device_ids
