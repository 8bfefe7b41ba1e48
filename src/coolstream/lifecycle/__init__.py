"""
Lifecycle Module
================

Decides when the frame source runs.

Components:
    - LifecycleController: viewer/control events -> source start/stop
    - IdleTimer: cancellable, race-safe idle shutdown timer
    - Scheduler / ThreadingScheduler: timer backend
"""

from coolstream.lifecycle.timer import (
    IdleTimer,
    Scheduler,
    ThreadingScheduler,
    TimerHandle,
)
from coolstream.lifecycle.controller import LifecycleController, LifecycleMetrics

__all__ = [
    "LifecycleController",
    "LifecycleMetrics",
    "IdleTimer",
    "Scheduler",
    "ThreadingScheduler",
    "TimerHandle",
]
