"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and by every router in
api/routes/v1/ (to apply per-route limits with @limiter.limit()).

A single shared instance means all routes count against the same in-memory
store. Trigger routes get tight limits: each call scans the whole schedule.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

TRIGGER_LIMIT = "10/minute"
READ_LIMIT = "120/minute"
WRITE_LIMIT = "30/minute"
