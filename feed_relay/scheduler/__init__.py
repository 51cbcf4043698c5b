"""Periodic trigger for the feed check."""

from .apsched_adapter import APSchedulerAdapter, CHECK_JOB_ID

__all__ = ["APSchedulerAdapter", "CHECK_JOB_ID"]
