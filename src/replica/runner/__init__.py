"""
Job runner module.
"""

from .job_runner import JobRunner, JobHandle

__all__ = [
    "JobRunner",
    "JobHandle",
]
