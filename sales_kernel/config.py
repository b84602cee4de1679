"""
Sales kernel configuration (``sales_kernel.config``).

Responsibility
--------------
Defines ``SalesKernelConfig`` with sensible defaults, validates it on
construction, and loads it from a YAML file.  ``DATABASE_URL`` in the
environment overrides the configured database URL.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from sales_kernel.logging_config import get_logger

logger = get_logger("config")

DATABASE_URL_ENV = "DATABASE_URL"


@dataclass(frozen=True)
class SalesKernelConfig:
    """
    Runtime settings for the sales kernel.

    Override at instantiation or load from YAML:

        config = load_config("sales_kernel.yaml")
        configure_logging(level=config.numeric_log_level)
        init_engine_from_config(config)
    """

    database_url: str = "sqlite:///sales_kernel.db"
    echo: bool = False

    # Connection pool (PostgreSQL only)
    pool_size: int = 10
    max_overflow: int = 5
    pool_timeout: int = 30

    # Amortization precision
    installment_decimal_places: int = 2

    # Prefix of seller correction notes appended to Sale.notes
    correction_note_label: str = "CORRECTION"

    log_level: str = "INFO"

    def __post_init__(self):
        if not self.database_url or not self.database_url.strip():
            raise ValueError("database_url cannot be empty")
        if self.pool_size < 1:
            raise ValueError("pool_size must be positive")
        if self.max_overflow < 0:
            raise ValueError("max_overflow cannot be negative")
        if self.pool_timeout < 1:
            raise ValueError("pool_timeout must be positive")
        if not 0 <= self.installment_decimal_places <= 6:
            raise ValueError("installment_decimal_places must be between 0 and 6")
        if not self.correction_note_label or not self.correction_note_label.strip():
            raise ValueError("correction_note_label cannot be empty")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"log_level {self.log_level!r} is not a logging level")

    @property
    def numeric_log_level(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SalesKernelConfig:
        """Build from a parsed mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**dict(data))

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> SalesKernelConfig:
    """
    Load configuration from a YAML file.

    The file's top level is a mapping; an optional ``sales_kernel`` key
    nests the settings.  With no path, defaults are used.  ``DATABASE_URL``
    (from ``env``, default ``os.environ``) replaces ``database_url``.
    """
    env = os.environ if env is None else env
    data: dict[str, Any] = {}
    if path is not None:
        with open(path, encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"{path}: top level must be a mapping")
        data = dict(loaded.get("sales_kernel", loaded))

    override = env.get(DATABASE_URL_ENV)
    if override:
        data["database_url"] = override

    config = SalesKernelConfig.from_mapping(data)
    logger.info(
        "config_loaded",
        extra={
            "source": str(path) if path is not None else "defaults",
            "database_url_from_env": bool(override),
        },
    )
    return config
