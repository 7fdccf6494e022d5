"""Centralised, injectable configuration for the Bluesky CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Self

from dotenv import load_dotenv

from .config_file import CliConfigFile
from .exceptions import ConfigValueError

DEFAULT_SERVICE_URL = "https://bsky.social"
DEFAULT_CONFIG_DIR = "~/.config/bluesky-cli"
CONFIG_FILE_NAME = "config.json"
SESSION_FILE_NAME = "session.json"


def _default_config_dir() -> Path:
    return Path(DEFAULT_CONFIG_DIR).expanduser()


@dataclass(frozen=True)
class CliConfig:
    """Immutable configuration for one CLI invocation.

    Load from environment with `CliConfig.from_env()` or construct directly for testing.
    """

    service_url: str = DEFAULT_SERVICE_URL
    config_dir: Path = field(default_factory=_default_config_dir)
    color_output: bool = True
    verbose: bool = False
    debug: bool = False
    default_username: str | None = None

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def session_path(self) -> Path:
        return self.config_dir / SESSION_FILE_NAME

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> Self:
        """Load configuration from environment variables.

        Args:
            dotenv_path: Optional path to .env file. If None, uses default .env discovery.

        Returns:
            CliConfig instance populated from environment.
        """
        load_dotenv(dotenv_path)

        config_dir = os.getenv("BSKY_CONFIG_DIR", "").strip()
        return cls(
            service_url=_normalise_url(os.getenv("BSKY_SERVICE_URL", "")) or DEFAULT_SERVICE_URL,
            config_dir=Path(config_dir).expanduser() if config_dir else _default_config_dir(),
            color_output=_parse_optional_bool(os.getenv("BSKY_COLOR", ""), env_name="BSKY_COLOR")
            is not False,
            verbose=_parse_optional_bool(os.getenv("BSKY_VERBOSE", ""), env_name="BSKY_VERBOSE")
            or False,
            debug=_parse_optional_bool(os.getenv("BSKY_DEBUG", ""), env_name="BSKY_DEBUG")
            or False,
            default_username=os.getenv("BSKY_DEFAULT_USERNAME", "").strip() or None,
        )

    def with_overrides(
        self,
        *,
        service_url: str | None = None,
        color_output: bool | None = None,
        verbose: bool | None = None,
        debug: bool | None = None,
    ) -> Self:
        """Return a new config with specified overrides (for CLI options)."""
        return replace(
            self,
            service_url=self.service_url
            if service_url is None
            else _normalise_url(service_url) or self.service_url,
            color_output=self.color_output if color_output is None else color_output,
            verbose=self.verbose if verbose is None else verbose,
            debug=self.debug if debug is None else debug,
        )

    def with_file_overrides(self, file_config: CliConfigFile) -> Self:
        """Return a new config with config-file values overriding env/default values."""
        return replace(
            self,
            service_url=self.service_url
            if file_config.api_endpoint is None
            else file_config.api_endpoint,
            color_output=self.color_output
            if file_config.color_output is None
            else file_config.color_output,
            verbose=self.verbose if file_config.verbose is None else file_config.verbose,
            default_username=self.default_username
            if file_config.default_username is None
            else file_config.default_username,
        )


def _normalise_url(value: str) -> str:
    return value.strip().rstrip("/")


def _parse_optional_bool(value: str, *, env_name: str) -> bool | None:
    """Parse an optional boolean from an environment variable."""
    text = value.strip().lower()
    if not text:
        return None
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise ConfigValueError(env_name, "a boolean value (true/false, 1/0, yes/no, on/off)")
