"""Job tracking module."""

from .tracker import IJobTracker, JobTracker

__all__ = ["IJobTracker", "JobTracker"]
