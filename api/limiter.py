"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, attached to app.state) and by
api/routes/auth.py (per-route limits on login and registration).

A single shared instance means every route draws from the same in-memory
counter store. Tests call limiter.reset() between cases.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
