"""
Background jobs for Project Pulse.

- reminder_cron: re-runs action detection for projects with a due reminder
- integration_worker: drains the integration job queue
"""

from .integration_worker import run_worker, run_worker_pass
from .reminder_cron import run_reminder_job

__all__ = ["run_reminder_job", "run_worker", "run_worker_pass"]
