"""
PivSeal Configuration Module
============================

Immutable configuration with environment overrides and safe defaults.

Security Features:
- Immutable configuration after initialization
- Environment variable overrides (PIVSEAL_SECTION__KEY)
- Sensitive keys (pin, token, secret...) are never read from overrides
- No secrets in default values
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Optional

from pivseal.core.device.criteria import SelectionCriteria

DEFAULT_PIN: Final[str] = "123456"
PIN_ENV_VAR: Final[str] = "YUBIKEY_PIN"

_VALID_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Leaf names that are never taken from the environment overrides
_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "pin", "password", "secret", "key", "keys", "token", "root_token",
    "api_key", "private_key", "credential",
})


def _is_sensitive_key(key: str) -> bool:
    """Check if a dotted configuration key names sensitive data."""
    return key.rsplit(".", 1)[-1] in _SENSITIVE_KEYS


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _default_token_path() -> Path:
    try:
        return Path.home() / ".vault-token"
    except RuntimeError:
        # No resolvable home directory
        return Path.cwd() / ".vault-token"


def _default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "PivSeal" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "PivSeal"
    else:
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "pivseal" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Where tokens and logs are written."""

    token_path: Path = field(default_factory=_default_token_path)
    log_dir: Path = field(default_factory=_default_log_dir)

    def __post_init__(self) -> None:
        for field_name in ("token_path", "log_dir"):
            path = Path(getattr(self, field_name)).expanduser()
            object.__setattr__(self, field_name, path)


@dataclass(frozen=True, slots=True)
class DeviceConfig:
    """Default device selection settings."""

    serial: int = 0
    avoid_serials: tuple[int, ...] = ()
    verbose: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.serial <= 0xFFFFFFFF:
            raise ValueError(f"Invalid device serial: {self.serial}")
        object.__setattr__(self, "avoid_serials", tuple(int(s) for s in self.avoid_serials))

    def criteria(self) -> SelectionCriteria:
        """Build selection criteria from these settings. The PIN is attached separately."""
        return SelectionCriteria.create(
            serial=self.serial,
            avoid=self.avoid_serials,
            verbose=self.verbose,
        )


@dataclass(frozen=True, slots=True)
class VaultConfig:
    """Vault API client settings."""

    address: str = "http://127.0.0.1:8200"
    timeout: float = 60.0
    max_retries: int = 2
    min_retry_wait: float = 1.0
    max_retry_wait: float = 1.5

    def __post_init__(self) -> None:
        if not self.address.startswith(("http://", "https://")):
            raise ValueError(f"Vault address must be an http(s) URL: {self.address}")
        if self.timeout <= 0:
            raise ValueError("Vault timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("Vault max_retries must not be negative")
        if self.min_retry_wait < 0 or self.max_retry_wait < self.min_retry_wait:
            raise ValueError("Vault retry waits must satisfy 0 <= min <= max")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False
    max_file_size_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3

    def __post_init__(self) -> None:
        if self.level.upper() not in _VALID_LEVELS:
            raise ValueError(f"Invalid log level: {self.level}")
        object.__setattr__(self, "level", self.level.upper())


@dataclass(frozen=True, slots=True)
class PivSealConfig:
    """
    Top-level configuration.

    Usage:
        config = PivSealConfig.load()
        criteria = config.device.criteria().with_pin(resolve_pin(None))
        address = config.vault.address
    """

    paths: PathConfig = field(default_factory=PathConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, env_prefix: str = "PIVSEAL", environ: Optional[dict[str, str]] = None) -> PivSealConfig:
        """
        Load configuration with environment variable overrides.

        Examples:
            PIVSEAL_VAULT__ADDRESS=https://vault.internal:8200
            PIVSEAL_DEVICE__SERIAL=12345678
            PIVSEAL_DEVICE__AVOID_SERIALS=111,222
            PIVSEAL_LOGGING__LEVEL=DEBUG
            PIVSEAL_PATHS__TOKEN_PATH=/run/vault/token

        Raises:
            ValueError: If an override cannot be parsed or fails validation
        """
        env = cls._parse_env_overrides(env_prefix, os.environ if environ is None else environ)

        paths_kwargs: dict[str, Any] = {}
        if "paths.token_path" in env:
            paths_kwargs["token_path"] = Path(env["paths.token_path"])
        if "paths.log_dir" in env:
            paths_kwargs["log_dir"] = Path(env["paths.log_dir"])

        device_kwargs: dict[str, Any] = {}
        if "device.serial" in env:
            device_kwargs["serial"] = int(env["device.serial"])
        if "device.avoid_serials" in env:
            device_kwargs["avoid_serials"] = tuple(
                int(s) for s in env["device.avoid_serials"].split(",") if s.strip()
            )
        if "device.verbose" in env:
            device_kwargs["verbose"] = _parse_bool(env["device.verbose"])

        vault_kwargs: dict[str, Any] = {}
        if "vault.address" in env:
            vault_kwargs["address"] = env["vault.address"]
        for name in ("timeout", "min_retry_wait", "max_retry_wait"):
            if f"vault.{name}" in env:
                vault_kwargs[name] = float(env[f"vault.{name}"])
        if "vault.max_retries" in env:
            vault_kwargs["max_retries"] = int(env["vault.max_retries"])

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in env:
            logging_kwargs["level"] = env["logging.level"]
        for name in ("enable_console", "enable_file", "enable_json"):
            if f"logging.{name}" in env:
                logging_kwargs[name] = _parse_bool(env[f"logging.{name}"])

        return cls(
            paths=PathConfig(**paths_kwargs),
            device=DeviceConfig(**device_kwargs),
            vault=VaultConfig(**vault_kwargs),
            logging=LoggingConfig(**logging_kwargs),
        )

    @staticmethod
    def _parse_env_overrides(prefix: str, environ: dict[str, str]) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in environ.items():
            if key.startswith(prefix_upper):
                # PIVSEAL_SECTION__KEY -> section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides


def resolve_pin(flag_value: Optional[str], environ: Optional[dict[str, str]] = None) -> str:
    """
    Resolve the device PIN.

    Order: explicit flag, then the YUBIKEY_PIN environment variable, then
    the PIV factory default.
    """
    if flag_value:
        return flag_value
    env = os.environ if environ is None else environ
    return env.get(PIN_ENV_VAR) or DEFAULT_PIN
