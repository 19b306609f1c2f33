"""Configuration management for sticker_core."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_DB_FILENAME,
    DEFAULT_WALLET_ASSETS,
    DEFAULT_WALLET_CREDIT,
)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class WalletSettings:
    initial_assets: int = DEFAULT_WALLET_ASSETS
    initial_credit: int = DEFAULT_WALLET_CREDIT


@dataclass(frozen=True)
class Config:
    db_path: str = DEFAULT_DB_FILENAME
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS
    media_root: Path | None = None
    log_level: str = "INFO"
    wallet: WalletSettings = field(default_factory=WalletSettings)


def _coerce_timeout(value: Any, *, field_name: str) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be a number (got {value!r})") from exc
    if timeout <= 0:
        raise ValueError(f"{field_name} must be positive (got {timeout})")
    return timeout


def _coerce_log_level(value: Any) -> str:
    level = str(value).upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(
            f"log_level must be one of {sorted(VALID_LOG_LEVELS)} (got {value!r})"
        )
    return level


def _parse_wallet_settings(payload: dict[str, Any] | None) -> WalletSettings:
    """Parse initial wallet balances from config payload."""
    if not payload:
        return WalletSettings()
    if not isinstance(payload, dict):
        raise ValueError("wallet must be an object")

    values: dict[str, int] = {}
    for key in ("initial_assets", "initial_credit"):
        if key not in payload:
            continue
        raw = payload[key]
        try:
            amount = int(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"wallet.{key} must be an integer (got {raw!r})") from exc
        if amount < 0:
            raise ValueError(f"wallet.{key} must be non-negative (got {amount})")
        values[key] = amount

    return WalletSettings(**values)


def _apply_env_overrides(config: Config) -> Config:
    """Environment variables win over the file so deployments can relocate the database."""
    overrides: dict[str, Any] = {}

    db_path = os.getenv("STICKER_DB_PATH")
    if db_path:
        overrides["db_path"] = db_path

    timeout = os.getenv("DB_CONNECT_TIMEOUT")
    if timeout:
        overrides["connect_timeout"] = _coerce_timeout(timeout, field_name="DB_CONNECT_TIMEOUT")

    media_root = os.getenv("STICKER_MEDIA_ROOT")
    if media_root:
        overrides["media_root"] = Path(media_root)

    log_level = os.getenv("STICKER_LOG_LEVEL")
    if log_level:
        overrides["log_level"] = _coerce_log_level(log_level)

    return replace(config, **overrides) if overrides else config


def parse_config(data: dict[str, Any]) -> Config:
    """Build a Config from an already decoded JSON payload."""
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be an object")

    media_root = data.get("media_root")
    return Config(
        db_path=str(data.get("db_path", DEFAULT_DB_FILENAME)),
        connect_timeout=_coerce_timeout(
            data.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT_SECONDS),
            field_name="connect_timeout",
        ),
        media_root=Path(media_root) if media_root else None,
        log_level=_coerce_log_level(data.get("log_level", "INFO")),
        wallet=_parse_wallet_settings(data.get("wallet")),
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from JSON, falling back to defaults when no path is given."""
    if config_path is None:
        return _apply_env_overrides(Config())

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {path}\n"
            "Create it or call load_config() without a path to use defaults."
        )

    with path.open("r", encoding="utf-8") as file:
        data: dict[str, Any] = json.load(file)

    return _apply_env_overrides(parse_config(data))
