"""Composition root for wiring CLI dependencies."""

from __future__ import annotations

from .cli import CliDependencies, create_app
from .config import CliConfig
from .infrastructure import EncryptedSessionStore, XrpcRemoteClient
from .protocols import RemoteClient


def build_client(service_url: str) -> RemoteClient:
    """Return a fresh, unauthenticated XRPC client for `service_url`."""
    return XrpcRemoteClient(service_url)


def build_cli_dependencies(*, config: CliConfig) -> CliDependencies:
    """Build concrete dependencies for CLI commands.

    Args:
        config: CLI configuration (used for the session file location).
    """
    store = EncryptedSessionStore(config.session_path)
    return CliDependencies(store=store, client_factory=build_client)


app = create_app(build_cli_dependencies)
