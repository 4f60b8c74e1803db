"""
Core configuration - environment-driven settings

Module: core.config
Date: 2025-11-28
Version: 0.1.0

Reads the process environment once and produces an immutable CoreConfig.
NADMIN_ENV takes precedence over NODE_ENV so the core can run next to the
dashboard frontend without sharing its environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .constants import (
    CONTAINER_DB_PATH,
    DB_NAME,
    DEFAULT_ADMIN_DOMAINS,
    DEFAULT_AUTOSAVE_INTERVAL,
    DEFAULT_BCRYPT_ROUNDS,
    DEFAULT_SESSION_CLEANUP_INTERVAL,
    DEV_DB_DIR,
)


@dataclass(frozen=True)
class CoreConfig:
    """Runtime settings for the store and security managers"""
    db_path: Path
    is_development: bool = True
    autosave_interval: float = DEFAULT_AUTOSAVE_INTERVAL
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    admin_domains: Tuple[str, ...] = field(default=DEFAULT_ADMIN_DOMAINS)
    session_cleanup_interval: float = DEFAULT_SESSION_CLEANUP_INTERVAL

    @property
    def is_production(self) -> bool:
        return not self.is_development

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CoreConfig":
        """
        Build configuration from environment variables

        Args:
            environ: Mapping to read (defaults to os.environ)

        Returns:
            CoreConfig

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        mode = env.get("NADMIN_ENV") or env.get("NODE_ENV") or "development"
        is_development = mode.strip().lower() == "development"

        default_path = (
            Path(DEV_DB_DIR) / DB_NAME if is_development else Path(CONTAINER_DB_PATH)
        )
        db_path = Path(env.get("NADMIN_DB_PATH") or default_path)

        domains = env.get("NADMIN_ADMIN_DOMAINS")
        admin_domains = (
            tuple(d.strip().lower() for d in domains.split(",") if d.strip())
            if domains
            else DEFAULT_ADMIN_DOMAINS
        )

        return cls(
            db_path=db_path,
            is_development=is_development,
            autosave_interval=float(
                env.get("NADMIN_AUTOSAVE_INTERVAL", DEFAULT_AUTOSAVE_INTERVAL)
            ),
            bcrypt_rounds=int(env.get("NADMIN_BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS)),
            admin_domains=admin_domains,
            session_cleanup_interval=float(
                env.get("NADMIN_SESSION_CLEANUP_INTERVAL", DEFAULT_SESSION_CLEANUP_INTERVAL)
            ),
        )
