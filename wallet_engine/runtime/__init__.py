"""Timer-driven background work with an injectable clock."""

from .scheduler import Clock, ManualClock, RepeatingTask, Scheduler, SystemClock

__all__ = [
    "Clock",
    "ManualClock",
    "RepeatingTask",
    "Scheduler",
    "SystemClock",
]
