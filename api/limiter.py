"""
api/limiter.py -- The slowapi Limiter shared by api/main.py and api/routes/auth.py.

Counters are keyed by client IP. RATE_LIMIT_STORAGE selects the backend:
"memory://" keeps them per process, so a multi-worker deployment should point
it at a shared store such as "redis://host:6379".
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage)
