"""
optisync - resilient optimistic synchronization for client-side state.

Apply mutations locally before the server confirms them, retry transient
failures with jittered exponential backoff, stop calling failing endpoints
with per-key circuit breakers, and roll back exactly when a mutation gives up.
"""

__version__ = "0.1.0"

from optisync.core import *  # noqa
from optisync.sync import *  # noqa
