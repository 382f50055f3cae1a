"""
Process-wide engine accessor for test harnesses and dependency wiring.

Production code should build one engine with ``create_engine`` at startup and
pass it to consumers. ``reset_engine`` discards the backing stores outright and
must not run while evaluations or store writes are in flight.
"""

import threading
from typing import Optional

from .rules.engine import AuthorizationEngine
from .rules.permissions import PermissionStore

_engine: Optional[AuthorizationEngine] = None
_engine_lock = threading.Lock()


def get_engine(permission_store: Optional[PermissionStore] = None) -> AuthorizationEngine:
    """Get the shared engine, creating it on first call.

    The permission store argument only applies to the first call.
    """
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = AuthorizationEngine(permission_store=permission_store)
        return _engine


def reset_engine() -> None:
    """Drop the shared engine so the next get_engine builds a fresh one."""
    global _engine
    with _engine_lock:
        _engine = None
