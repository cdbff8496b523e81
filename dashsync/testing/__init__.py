"""Test helpers for dashsync."""

from .clock import ManualScheduler, ManualTimer

__all__ = ["ManualScheduler", "ManualTimer"]
