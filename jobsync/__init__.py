"""
jobsync

Background job dispatch queue backed by PostgreSQL, paired with a bounded
per-tenant sync action log that lets connected clients follow data mutations
and recover missed updates after reconnecting.
"""

__version__ = "1.0.0"
