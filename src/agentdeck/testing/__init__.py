"""Testing helpers for Agentdeck."""

from .clock import ManualScheduler

__all__ = ["ManualScheduler"]
