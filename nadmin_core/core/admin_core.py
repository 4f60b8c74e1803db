"""
Admin Core - Wires the store and the security managers together

Module: core.admin_core
Date: 2025-12-02
Version: 0.2.0

CHANGELOG:
[2025-12-02 v0.2.0] Maintenance loop
  - Periodic expired-session sweep
  - Status snapshot for health endpoints

[2025-11-28 v0.1.0] Initial implementation
  - One DocumentStore handle shared by every manager
  - start/stop lifecycle

ARCHITECTURE:
AdminCore is what the HTTP layer holds on to:
  - store:     DocumentStore (single writer)
  - config:    ConfigStore
  - cache:     ProjectCacheStore
  - audit:     AuditLog
  - sessions:  SessionManager
  - passwords: PasswordManager
  - csrf:      CSRFManager

Several AdminCore instances with different files can coexist (tests do
this); nothing is module-global.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .config import CoreConfig
from .constants import CORE_NAME, CORE_VERSION
from ..persistence import AuditLog, ConfigStore, DocumentStore, ProjectCacheStore
from ..security.authentication import PasswordManager, SessionManager, SessionSettings
from ..security.csrf import CSRFManager


@dataclass
class CoreStatus:
    """Status information about the core"""
    name: str
    version: str
    is_running: bool
    store_path: str
    store_initialized: bool
    session_count: int
    audit_entry_count: int
    password_configured: bool
    timestamp: datetime


class AdminCore:
    """
    Persistence and authentication core of the admin dashboard.

    Typical usage:
        core = AdminCore(CoreConfig.from_env())
        await core.start()
        token = await core.sessions.create_session("admin", ip)
        ...
        await core.stop()
    """

    def __init__(
        self,
        config: CoreConfig,
        session_settings: Optional[SessionSettings] = None,
        store: Optional[DocumentStore] = None,
    ):
        """
        Initialize the core (no I/O until start() or first use)

        Args:
            config: Runtime configuration
            session_settings: Session timing overrides
            store: Pre-built store (defaults to one at config.db_path)
        """
        self.logger = logging.getLogger("core.admin_core")
        self.config = config

        self.store = store or DocumentStore(
            str(config.db_path), autosave_interval=config.autosave_interval
        )
        self.config_store = ConfigStore(self.store)
        self.cache = ProjectCacheStore(self.store)
        self.audit = AuditLog(self.store)
        self.sessions = SessionManager(
            self.store, self.config_store, self.audit, session_settings
        )
        self.passwords = PasswordManager(
            self.config_store, self.audit, bcrypt_rounds=config.bcrypt_rounds
        )
        self.csrf = CSRFManager(
            self.sessions,
            is_development=config.is_development,
            admin_domains=config.admin_domains,
        )

        self._is_running = False
        self._maintenance_task: Optional[asyncio.Task] = None

        mode = "development" if config.is_development else "production"
        self.logger.info(f"{CORE_NAME} v{CORE_VERSION} configured ({mode}, db={config.db_path})")

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self, run_maintenance: bool = True) -> None:
        """
        Initialize the store and start the session maintenance loop

        Raises:
            StoreError: If the store cannot be loaded
        """
        if self._is_running:
            return
        await self.store.initialize()
        if run_maintenance:
            self._maintenance_task = asyncio.get_running_loop().create_task(
                self._maintenance_loop()
            )
        self._is_running = True
        self.logger.info("Core started")

    async def stop(self) -> None:
        """Stop maintenance and flush the store"""
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            await asyncio.gather(self._maintenance_task, return_exceptions=True)
            self._maintenance_task = None
        await self.store.close()
        self._is_running = False
        self.logger.info("Core stopped")

    async def _maintenance_loop(self) -> None:
        interval = self.config.session_cleanup_interval
        while True:
            await asyncio.sleep(interval)
            removed = await self.sessions.cleanup_expired_sessions()
            if removed:
                self.logger.debug(f"Maintenance removed {removed} sessions")

    async def get_status(self) -> CoreStatus:
        """Snapshot of the core state (initializes the store if needed)"""
        return CoreStatus(
            name=CORE_NAME,
            version=CORE_VERSION,
            is_running=self._is_running,
            store_path=str(self.store.file_path),
            store_initialized=self.store.initialized,
            session_count=await self.sessions.count_sessions(),
            audit_entry_count=await self.audit.count(),
            password_configured=await self.passwords.has_admin_password(),
            timestamp=self.store.now(),
        )
