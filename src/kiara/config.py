"""
Configuration for Kiara.

Values come from, in increasing precedence: defaults, a JSON file, the
environment (``KIARA_*`` variables), and explicit arguments.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from kiara.errors import ConfigValidationError, UnrecognizedSchemeError
from kiara.urls import build_url, parse_storage_url, rewrite_db_name

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL = "kiara:dev"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 4334
DEFAULT_SYSTEM_NAME = "system"
DEFAULT_GRAPH_NAME = "default"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_ENV_VARS = {
    "KIARA_PROTOCOL": "protocol",
    "KIARA_HOST": "host",
    "KIARA_PORT": "port",
    "KIARA_SYSTEM": "system_name",
    "KIARA_DEFAULT_GRAPH": "default_graph_name",
    "KIARA_DATA_DIR": "data_dir",
    "KIARA_LOG_LEVEL": "log_level",
}


@dataclass
class KiaraConfig:
    """Where the system store lives and how the library runs."""
    protocol: str = DEFAULT_PROTOCOL
    host: str = DEFAULT_HOST
    port: Optional[int] = DEFAULT_PORT
    system_name: str = DEFAULT_SYSTEM_NAME
    default_graph_name: str = DEFAULT_GRAPH_NAME
    data_dir: Optional[str] = None     # persist stores here; in-memory when None
    log_level: str = "WARNING"

    @property
    def system_url(self) -> str:
        return build_url(self.protocol, self.host, self.port, self.system_name)

    @property
    def default_url(self) -> str:
        return rewrite_db_name(self.system_url, self.default_graph_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": self.protocol,
            "host": self.host,
            "port": self.port,
            "system_name": self.system_name,
            "default_graph_name": self.default_graph_name,
            "data_dir": self.data_dir,
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KiaraConfig":
        port = data.get("port", DEFAULT_PORT)
        try:
            port = int(port) if port not in (None, "") else None
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(f"Invalid port: {port!r}", port=port) from e
        return cls(
            protocol=data.get("protocol", DEFAULT_PROTOCOL),
            host=data.get("host", DEFAULT_HOST),
            port=port,
            system_name=data.get("system_name", DEFAULT_SYSTEM_NAME),
            default_graph_name=data.get("default_graph_name", DEFAULT_GRAPH_NAME),
            data_dir=data.get("data_dir"),
            log_level=str(data.get("log_level", "WARNING")).upper(),
        )

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["KiaraConfig"] = None,
    ) -> "KiaraConfig":
        """Overlay ``KIARA_*`` environment variables on ``base`` (or defaults)."""
        environ = os.environ if environ is None else environ
        data = (base or cls()).to_dict()
        for var, key in _ENV_VARS.items():
            if var in environ:
                data[key] = environ[var]
        config = cls.from_dict(data)
        config.validate_or_raise()
        return config

    def save(self, path: Path | str) -> None:
        """Save configuration to a JSON file."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path | str) -> "KiaraConfig":
        """Load configuration from a JSON file. Missing files give defaults."""
        path = Path(path)
        if not path.exists():
            logger.debug(f"No config file at {path}, using defaults")
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"Invalid config file {path}: {e}", path=str(path)) from e
        if not isinstance(data, dict):
            raise ConfigValidationError(f"Config file {path} must hold a JSON object", path=str(path))
        config = cls.from_dict(data)
        config.validate_or_raise()
        return config

    def with_overrides(self, **overrides: Any) -> "KiaraConfig":
        """Copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns list of error messages (empty if valid).
        """
        errors = []

        if self.port is not None and not 0 < self.port < 65536:
            errors.append(f"port must be between 1 and 65535, got {self.port}")

        if not self.system_name:
            errors.append("system_name must not be empty")
        if not self.default_graph_name:
            errors.append("default_graph_name must not be empty")
        if self.system_name and self.system_name == self.default_graph_name:
            errors.append("system_name and default_graph_name must differ")

        if self.log_level not in _LOG_LEVELS:
            errors.append(f"Invalid log_level: {self.log_level}")

        if not errors:
            try:
                parse_storage_url(self.system_url)
            except UnrecognizedSchemeError:
                errors.append(f"Unrecognized protocol: {self.protocol}")

        return errors

    def validate_or_raise(self) -> None:
        """Validate configuration, raising on errors."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))
