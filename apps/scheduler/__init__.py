"""Scheduler module for PaperPulse."""

from apps.scheduler.tasks import start_scheduler, stop_scheduler

__all__ = ["start_scheduler", "stop_scheduler"]
