"""
config
======

Runtime settings for the ledger and order engine.

Values are read from environment variables.  If ``{NAME}_FILE`` is set,
the value is read from that file instead, which lets operators mount
the database URI (it usually embeds a password) as a Docker or
Kubernetes secret without leaking it into the environment.  A relative
``*_FILE`` path is resolved against ``SECRETS_BASE_PATH`` when given.

Example usage::

    from brokerage.config import load_settings

    settings = load_settings()
    engine = OrderEngine.from_settings(settings)
"""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, FrozenSet, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigError


class EnvFileSource:
    """Resolve settings from the environment and optional ``*_FILE`` paths.

    If both ``{name}`` and ``{name}_FILE`` are set, the file takes
    precedence.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        base_path: Optional[Path] = None,
    ) -> None:
        self.environ = os.environ if environ is None else environ
        self.base_path = base_path
        self._cache: Dict[str, Optional[str]] = {}

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        if name not in self._cache:
            self._cache[name] = self._resolve(name)
        value = self._cache[name]
        return default if value in (None, "") else value

    def _resolve(self, name: str) -> Optional[str]:
        file_path = self.environ.get(f"{name}_FILE")
        if not file_path:
            return self.environ.get(name)
        path = Path(file_path)
        if not path.is_absolute() and self.base_path is not None:
            path = self.base_path / path
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"cannot read {name}_FILE at {path}: {exc}") from exc


class Settings(BaseModel):
    """Validated engine settings."""

    state_store_uri: str = "sqlite:///brokerage.db"
    base_currency: str = "TRY"
    # Empty means: any symbol that already has a balance record.
    tradeable_assets: FrozenSet[str] = frozenset()
    min_order_size: Decimal = Field(Decimal("0.01"), gt=0)
    min_order_price: Decimal = Field(Decimal("0.01"), gt=0)
    lock_timeout_seconds: float = Field(10.0, gt=0)
    lock_retry_attempts: int = Field(3, ge=1)
    event_store_path: Optional[str] = None
    log_level: str = "INFO"
    prometheus_port: Optional[int] = None


def _split_symbols(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return frozenset()
    return frozenset(p.strip().upper() for p in raw.split(",") if p.strip())


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    base_path: Optional[Path] = None,
) -> Settings:
    """Build :class:`Settings` from the environment.

    Raises
    ------
    ConfigError
        If a value cannot be parsed or fails validation.
    """
    env = environ if environ is not None else os.environ
    if base_path is None and env.get("SECRETS_BASE_PATH"):
        base_path = Path(env["SECRETS_BASE_PATH"])
    source = EnvFileSource(env, base_path)
    defaults = Settings()
    try:
        port = source.get("PROMETHEUS_PORT")
        return Settings(
            state_store_uri=source.get("STATE_STORE_URI", defaults.state_store_uri),
            base_currency=source.get("BASE_CURRENCY", defaults.base_currency).strip().upper(),
            tradeable_assets=_split_symbols(source.get("TRADEABLE_ASSETS")),
            min_order_size=Decimal(source.get("MIN_ORDER_SIZE", str(defaults.min_order_size))),
            min_order_price=Decimal(source.get("MIN_ORDER_PRICE", str(defaults.min_order_price))),
            lock_timeout_seconds=float(
                source.get("LOCK_TIMEOUT_SECONDS", str(defaults.lock_timeout_seconds))
            ),
            lock_retry_attempts=int(
                source.get("LOCK_RETRY_ATTEMPTS", str(defaults.lock_retry_attempts))
            ),
            event_store_path=source.get("EVENT_STORE_PATH"),
            log_level=source.get("LOG_LEVEL", defaults.log_level).upper(),
            prometheus_port=int(port) if port else None,
        )
    except (ValueError, InvalidOperation, ValidationError) as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
