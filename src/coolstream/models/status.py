"""
Status Models
=============

State enums and the status payload reported to external callers.

Core Concepts:
    - LifecycleState: whether the frame producer is running (or starting)
    - ServerLifecycle: whether the streaming listener exists
    - DevicePreference: which camera the producer should open
    - ServiceStatus: one consistent snapshot of all of the above

The two lifecycles are independent: the server can be Listening while
the producer is Idle (no viewers), but stopping the server always forces
the producer back to Idle.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class LifecycleState(str, Enum):
    """
    Producer lifecycle.

    Attributes:
        IDLE: Producer stopped (or its last start attempt failed)
        ACTIVE: Producer running or a start has been requested
    """

    IDLE = "Idle"
    ACTIVE = "Active"


class ServerLifecycle(str, Enum):
    """Streaming listener lifecycle."""

    STOPPED = "Stopped"
    LISTENING = "Listening"


class DevicePreference(str, Enum):
    """
    Camera selection preference.

    Mapping to a concrete capture device is the frame source's business.
    """

    BACK = "back"
    FRONT = "front"


class DeviceRequest(BaseModel):
    """Body of a device preference change request."""

    device: DevicePreference = Field(
        ...,
        description="Camera to use: 'front' or 'back'",
    )


class ServiceStatus(BaseModel):
    """
    Snapshot of the relay state.

    Attributes:
        server: Streaming listener lifecycle
        port: Bound streaming port, None while stopped
        lifecycle: Producer lifecycle
        producer_active: Whether the producer is currently running
        idle_shutdown_pending: Whether an idle timer is armed
        client_count: Connected streaming clients
        device: Current device preference
        last_error: Last fatal listener error, if any
    """

    server: ServerLifecycle = Field(
        default=ServerLifecycle.STOPPED,
        description="Streaming listener lifecycle",
    )
    port: Optional[int] = Field(
        default=None,
        description="Bound streaming port (None while stopped)",
    )
    lifecycle: LifecycleState = Field(
        default=LifecycleState.IDLE,
        description="Producer lifecycle",
    )
    producer_active: bool = Field(
        default=False,
        description="Whether the frame producer is running",
    )
    idle_shutdown_pending: bool = Field(
        default=False,
        description="Whether an idle shutdown is scheduled",
    )
    client_count: int = Field(
        default=0,
        ge=0,
        description="Number of connected streaming clients",
    )
    device: DevicePreference = Field(
        default=DevicePreference.BACK,
        description="Current camera preference",
    )
    last_error: Optional[str] = Field(
        default=None,
        description="Last fatal listener error, if any",
    )
