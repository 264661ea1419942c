# Routers package
from . import ota_router

__all__ = [
    "ota_router",
]
