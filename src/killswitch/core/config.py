"""Configuration manager for killswitch.

Loads config from YAML, merges with defaults, provides dot-notation access.
Signing keys are resolved once, at the command-line boundary, into a
:class:`SigningConfig` that is passed down to whatever needs it.
"""

from __future__ import annotations

import copy
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from killswitch.core.errors import MissingSigningKey

if TYPE_CHECKING:
    from killswitch.receipts.signer import ReceiptSigner

DEFAULT_CONFIG_PATH = Path("~/.killswitch/config.yaml")
CONFIG_ENV_VAR = "KILLSWITCH_CONFIG"

DEFAULT_CONFIG: dict[str, Any] = {
    "monitor": {
        "tick_interval_seconds": 1.0,
        "sample_window_seconds": 0.1,
    },
    "limits": {
        "cpu_percent": 90.0,
        "memory_mb": 8000.0,
        "timeout_seconds": 3600.0,
    },
    "receipts": {
        "output_path": "death-receipt.json",
    },
    "signing": {
        "env_vars": ["KILLSWITCH_KEY", "RECEIPT_KEY"],
    },
    "notification": {
        "enabled": True,
        "url": "https://receipts.finalbosstech.com/receipt",
        "tenant_id": "ai-killswitch",
        "timeout_seconds": 5.0,
    },
    "logging": {
        "dir": "~/.killswitch/logs",
        "level": "INFO",
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base. Override values win."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class KillswitchConfig:
    """Configuration manager with dot-notation access and YAML persistence."""

    def __init__(self, data: dict[str, Any] | None = None):
        self._data = copy.deepcopy(data or DEFAULT_CONFIG)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Get a value using dot-notation (e.g., 'limits.cpu_percent')."""
        keys = dotted_key.split(".")
        current = self._data
        for k in keys:
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default
        return current

    def set(self, dotted_key: str, value: Any) -> None:
        """Set a value using dot-notation."""
        keys = dotted_key.split(".")
        current = self._data
        for k in keys[:-1]:
            if k not in current:
                current[k] = {}
            current = current[k]
        current[keys[-1]] = value

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self._data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: Path) -> KillswitchConfig:
        """Load config from YAML, merging with defaults for missing keys."""
        path = Path(path).expanduser()
        if not path.exists():
            return cls()
        with open(path) as f:
            user_data = yaml.safe_load(f) or {}
        merged = _deep_merge(DEFAULT_CONFIG, user_data)
        return cls(data=merged)

    @staticmethod
    def default_path(environ: Mapping[str, str] | None = None) -> Path:
        """Config location: ``$KILLSWITCH_CONFIG`` or ``~/.killswitch``."""
        env = os.environ if environ is None else environ
        override = env.get(CONFIG_ENV_VAR)
        if override:
            return Path(override).expanduser()
        return DEFAULT_CONFIG_PATH.expanduser()


@dataclass(frozen=True)
class SigningConfig:
    """Private key used to sign receipts, or ``None`` when signing is off."""

    key: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.key)

    @classmethod
    def resolve(
        cls,
        explicit: str | None,
        environ: Mapping[str, str],
        env_vars: Sequence[str] = ("KILLSWITCH_KEY", "RECEIPT_KEY"),
    ) -> SigningConfig:
        """Pick the key from the flag first, then each env var in order."""
        if explicit:
            return cls(key=explicit)
        for name in env_vars:
            value = environ.get(name)
            if value:
                return cls(key=value)
        return cls(key=None)

    def signer(self) -> ReceiptSigner | None:
        """Build a signer, or return ``None`` when no key is configured.

        Raises :class:`InvalidSigningKey` if the key cannot be loaded.
        """
        if not self.key:
            return None
        from killswitch.receipts.signer import ReceiptSigner

        return ReceiptSigner(self.key)

    def require_signer(self) -> ReceiptSigner:
        """Like :meth:`signer` but a missing key is an error."""
        signer = self.signer()
        if signer is None:
            raise MissingSigningKey(
                "Missing key. Set KILLSWITCH_KEY or RECEIPT_KEY env var"
            )
        return signer
