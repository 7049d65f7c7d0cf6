"""
Reaper module.
Recovers stale processing jobs and deletes terminal jobs past retention.
"""

from jobsync.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
