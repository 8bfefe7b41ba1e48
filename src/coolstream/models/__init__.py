"""
Data Models
===========

Status enums and pydantic payloads shared by the controller and the
control API.
"""

from coolstream.models.status import (
    DevicePreference,
    DeviceRequest,
    LifecycleState,
    ServerLifecycle,
    ServiceStatus,
)

__all__ = [
    "DevicePreference",
    "DeviceRequest",
    "LifecycleState",
    "ServerLifecycle",
    "ServiceStatus",
]
