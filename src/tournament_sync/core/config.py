"""Configuration management for tournament sync.

This module handles loading and saving application configuration to/from
a JSON file. The config directory can be customized via CLI argument.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import copy
import json
import logging
import socket
from pathlib import Path
from typing import Any, Dict, Optional

from uuid6 import uuid7

from .sync_utils import DEFAULT_TIMEOUT_MS
from .validation import (
    ValidationError,
    validate_device_id,
    validate_entity_id,
    validate_optional_id,
    validate_timeout_ms,
)

logger = logging.getLogger(__name__)

__all__ = ["Config", "DEFAULT_TIMEOUT_MS"]

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "tournament-sync"
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_CONCURRENCY = 8

KNOWN_KEYS = frozenset({
    "database_file",
    "device_id",
    "device_name",
    "organization_id",
    "active_tournament_id",
    "sync",
})

SYNC_KEYS = frozenset({
    "remote_url",
    "timeout_ms",
    "poll_interval_seconds",
    "auto_upload",
    "max_concurrency",
})


class Config:
    """Manages application configuration stored in JSON format.

    Attributes:
        config_dir: Path to the configuration directory
        config_file: Path to config.json inside config_dir
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Custom config directory path. If None, uses
                ~/.config/tournament-sync/
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "config.json"
        self.config_data = self.load_config()

    def _default_config(self) -> Dict[str, Any]:
        return {
            "database_file": str((self.config_dir / "tournament_sync.db").absolute()),
            "device_id": uuid7().hex,
            "device_name": socket.gethostname() or "Unknown device",
            "organization_id": None,
            "active_tournament_id": None,
            "sync": {
                "remote_url": None,
                "timeout_ms": DEFAULT_TIMEOUT_MS,
                "poll_interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
                "auto_upload": True,
                "max_concurrency": DEFAULT_MAX_CONCURRENCY,
            },
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, filling in missing defaults.

        Invalid JSON falls back to the defaults. The merged result is written
        back so generated values (like the device id) persist.
        """
        config = self._default_config()
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    stored = json.load(f)
                if isinstance(stored, dict):
                    sync_section = stored.pop("sync", None)
                    config.update({k: v for k, v in stored.items() if k in KNOWN_KEYS})
                    if isinstance(sync_section, dict):
                        config["sync"].update(
                            {k: v for k, v in sync_section.items() if k in SYNC_KEYS}
                        )
                else:
                    logger.warning(f"Config file {self.config_file} is not an object, using defaults")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to read config file {self.config_file}: {e}. Using defaults.")
        self.save_config(config)
        return config

    def save_config(self, config: Dict[str, Any]) -> None:
        """Write configuration to the JSON file."""
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2, ensure_ascii=False)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        value = self.config_data.get(key)
        return copy.deepcopy(value) if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value and save to file."""
        if key not in KNOWN_KEYS or key == "sync":
            raise ValidationError("config_key", f"unknown key '{key}'")
        self.config_data[key] = value
        self.save_config(self.config_data)

    def get_config_dir(self) -> Path:
        """Get the configuration directory path."""
        return self.config_dir

    # ===== Device =====

    def get_device_id_hex(self) -> str:
        """Get the device ID as hex string."""
        return validate_device_id(self.config_data["device_id"])

    def get_device_name(self) -> str:
        """Get the human-readable device name."""
        return self.config_data.get("device_name") or "Unknown device"

    def set_device_name(self, name: str) -> None:
        """Set the device name."""
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("device_name", "cannot be empty")
        self.set("device_name", name.strip())

    # ===== Scope =====

    def get_organization_id(self) -> Optional[str]:
        return self.config_data.get("organization_id")

    def get_active_tournament_id(self) -> Optional[str]:
        return self.config_data.get("active_tournament_id")

    def set_active_scope(self, organization_id: str, tournament_id: Optional[str] = None) -> None:
        """Select the organization and tournament the sync commands act on."""
        self.config_data["organization_id"] = validate_entity_id(organization_id, "organization_id")
        self.config_data["active_tournament_id"] = validate_optional_id(tournament_id, "tournament_id")
        self.save_config(self.config_data)

    # ===== Sync Configuration =====

    def get_sync_config(self) -> Dict[str, Any]:
        """Get a copy of the sync section."""
        return copy.deepcopy(self.config_data["sync"])

    def _set_sync_value(self, key: str, value: Any) -> None:
        self.config_data["sync"][key] = value
        self.save_config(self.config_data)

    def get_sync_timeout_ms(self) -> int:
        """Default deadline for one sync task, in milliseconds."""
        value = self.config_data["sync"].get("timeout_ms", DEFAULT_TIMEOUT_MS)
        try:
            return validate_timeout_ms(value)
        except ValidationError as e:
            logger.warning(f"Invalid sync.timeout_ms in config ({e}), using {DEFAULT_TIMEOUT_MS}")
            return DEFAULT_TIMEOUT_MS

    def set_sync_timeout_ms(self, timeout_ms: int) -> None:
        self._set_sync_value("timeout_ms", validate_timeout_ms(timeout_ms))

    def get_remote_url(self) -> Optional[str]:
        return self.config_data["sync"].get("remote_url")

    def set_remote_url(self, url: Optional[str]) -> None:
        """Set the base URL of the remote document server."""
        if url is not None:
            if not isinstance(url, str) or not url.startswith(("http://", "https://")):
                raise ValidationError("remote_url", "must start with http:// or https://")
            url = url.rstrip("/")
        self._set_sync_value("remote_url", url)

    def get_poll_interval_seconds(self) -> float:
        value = self.config_data["sync"].get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            return DEFAULT_POLL_INTERVAL_SECONDS
        return float(value)

    def is_auto_upload_enabled(self) -> bool:
        return bool(self.config_data["sync"].get("auto_upload", True))

    def set_auto_upload_enabled(self, enabled: bool) -> None:
        self._set_sync_value("auto_upload", bool(enabled))

    def get_max_concurrency(self) -> int:
        value = self.config_data["sync"].get("max_concurrency", DEFAULT_MAX_CONCURRENCY)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            return DEFAULT_MAX_CONCURRENCY
        return value
