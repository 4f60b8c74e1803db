"""
nadmin core

Embedded persistence and authentication core of the nself admin dashboard:
a lazily-initialized document store backing configuration, sessions, CSRF
tokens and an append-only audit trail.

ARCHITECTURE:
- Layer 1 : Persistence (DocumentStore and its collections)
- Layer 2 : Security (sessions, admin password, CSRF)
- Layer 3 : AdminCore facade used by the HTTP layer

SECURITY NOTES:
- Single admin principal, no roles
- Single writer process; not safe for horizontal scale-out
- Complete audit logging of authentication events
"""

__version__ = "0.2.0"

from .core.admin_core import AdminCore, CoreStatus
from .core.config import CoreConfig
from .persistence import AuditLog, ConfigStore, DocumentStore
from .security.authentication import PasswordManager, SessionManager
from .security.csrf import CSRFManager

__all__ = [
    "AdminCore",
    "CoreStatus",
    "CoreConfig",
    "AuditLog",
    "ConfigStore",
    "DocumentStore",
    "PasswordManager",
    "SessionManager",
    "CSRFManager",
]
