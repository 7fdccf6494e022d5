"""Typed parsing and validation for the CLI config file."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigFileParseError, ConfigFileValidationError
from .infrastructure.filesystem import check_private_file, write_private_file


@dataclass(frozen=True)
class CliConfigFile:
    """Validated values loaded from `config.json`; None means "not set"."""

    default_username: str | None = None
    color_output: bool | None = None
    verbose: bool | None = None
    api_endpoint: str | None = None


class _ConfigFileModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True, strict=True)

    default_username: str | None = Field(default=None, alias="defaultUsername")
    color_output: bool | None = Field(default=None, alias="colorOutput")
    verbose: bool | None = None
    api_endpoint: str | None = Field(default=None, alias="apiEndpoint")

    @field_validator("default_username")
    @classmethod
    def _validate_username(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = value.strip().removeprefix("@")
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("api_endpoint")
    @classmethod
    def _validate_endpoint(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = value.strip().rstrip("/")
        parsed = urlparse(text)
        if parsed.scheme != "https" or not parsed.netloc:
            raise ValueError("must be an https:// URL")
        return text


def _format_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    message = str(first.get("msg", "invalid value"))
    return f"{location}: {message}"


def load_config_file(path: Path) -> CliConfigFile:
    """Load and validate `config.json`; a missing file yields all defaults."""
    if not path.exists():
        return CliConfigFile()
    check_private_file(path)

    raw_payload = path.read_text(encoding="utf-8")
    try:
        payload: object = json.loads(raw_payload)
    except json.JSONDecodeError as exc:
        raise ConfigFileParseError(str(path), str(exc)) from exc
    if not isinstance(payload, dict):
        raise ConfigFileValidationError(str(path), "<root>: expected a JSON object")

    try:
        model = _ConfigFileModel.model_validate(payload)
    except ValidationError as exc:
        raise ConfigFileValidationError(str(path), _format_validation_error(exc)) from exc

    return CliConfigFile(
        default_username=model.default_username,
        color_output=model.color_output,
        verbose=model.verbose,
        api_endpoint=model.api_endpoint,
    )


def write_config_file(path: Path, values: CliConfigFile) -> None:
    """Validate and write `values` as owner-only JSON, omitting unset keys."""
    try:
        model = _ConfigFileModel(
            default_username=values.default_username,
            color_output=values.color_output,
            verbose=values.verbose,
            api_endpoint=values.api_endpoint,
        )
    except ValidationError as exc:
        raise ConfigFileValidationError(str(path), _format_validation_error(exc)) from exc
    payload = model.model_dump(by_alias=True, exclude_none=True)
    write_private_file(path, json.dumps(payload, indent=2) + "\n")
