"""
API routers
"""

from . import workflows, executions, triggers, scheduler, subjects, monitoring

__all__ = ["workflows", "executions", "triggers", "scheduler", "subjects", "monitoring"]
