"""CLI for the Bluesky client.

Commands:
- login: Authenticate and store an encrypted session
- logout: Revoke and clear the stored session
- whoami: Show the logged-in account and whether its session is valid
- dm-list: List direct-message conversations
- dm-read: Show the messages exchanged with one account
- config: Show where configuration and session state live
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Annotated, NoReturn, Protocol

import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .application.auth import AuthManager, require_auth
from .application.chat import ChatService
from .config import CliConfig
from .config_file import load_config_file
from .domain import ChatMessage, ConvoSummary, SessionRecord
from .error_reporting import ExitCode, exit_code_for, format_error
from .exceptions import AuthError, BskyError, SessionDecodeError
from .observability.logging import set_log_level
from .protocols import ClientFactory, SessionStore, Sleep


class DependenciesBuilder(Protocol):
    """Protocol for constructing CLI dependencies."""

    def __call__(self, *, config: CliConfig) -> CliDependencies:
        """Build dependencies for CLI commands."""
        ...


@dataclass(frozen=True)
class CliDependencies:
    """Concrete dependencies required by the CLI."""

    store: SessionStore
    client_factory: ClientFactory
    sleep: Sleep = field(default=asyncio.sleep)


@dataclass(frozen=True)
class CliContext:
    """Runtime CLI context for a single command invocation."""

    config: CliConfig
    deps_builder: DependenciesBuilder
    console: Console
    err_console: Console

    def build_dependencies(self) -> CliDependencies:
        """Return dependencies using the configured builder."""
        return self.deps_builder(config=self.config)

    def notify_retry(self, attempt: int, error: Exception, delay_ms: int) -> None:
        code = getattr(error, "code", type(error).__name__)
        self.err_console.print(
            f"[yellow]Request failed ({escape(str(code))}); "
            f"retrying in {delay_ms / 1000:.1f}s (attempt {attempt})[/yellow]"
        )

    def fail(self, error: BaseException) -> NoReturn:
        message = format_error(error, debug=self.config.debug)
        self.err_console.print(f"[red]Error:[/red] {escape(message)}")
        raise typer.Exit(code=int(exit_code_for(error)))


class CliContextNotInitialisedError(typer.BadParameter):
    """Raised when CLI context is missing."""

    def __init__(self) -> None:
        super().__init__("CLI context is not initialised. Use the bsky entry point.")


def _get_context(ctx: typer.Context) -> CliContext:
    if not isinstance(ctx.obj, CliContext):
        raise CliContextNotInitialisedError()
    return ctx.obj


def _consoles(color: bool) -> tuple[Console, Console]:
    return (
        Console(no_color=not color, soft_wrap=True),
        Console(stderr=True, no_color=not color, soft_wrap=True),
    )


def _load_config(*, debug: bool, verbose: bool, no_color: bool) -> CliConfig:
    config = CliConfig.from_env()
    config = config.with_file_overrides(load_config_file(config.config_path))
    return config.with_overrides(
        color_output=False if no_color else None,
        verbose=True if verbose else None,
        debug=True if debug else None,
    )


def _run[T](state: CliContext, command: Callable[[], Awaitable[T]]) -> T:
    """Run an async command body, mapping failures to exit codes."""
    try:
        return asyncio.run(command())
    except BskyError as exc:
        state.fail(exc)
    except KeyboardInterrupt:
        raise typer.Exit(code=int(ExitCode.INTERRUPTED)) from None


def _version_callback(value: bool) -> None:
    if value:
        rprint(f"bsky {__version__}")
        raise typer.Exit()


def _session_json(record: SessionRecord, *, authenticated: bool) -> dict[str, object]:
    return {
        "authenticated": authenticated,
        "handle": record.handle,
        "did": record.did,
        "lastUsed": record.last_used.isoformat(),
    }


def _convo_json(convo: ConvoSummary) -> dict[str, object]:
    payload = asdict(convo)
    payload["member_handles"] = list(convo.member_handles)
    return payload


def _display_handle(handle: str) -> str:
    return f"@{handle.strip().removeprefix('@')}"


def create_app(deps_builder: DependenciesBuilder) -> typer.Typer:
    """Create a Typer app wired with the provided dependencies builder."""
    app = typer.Typer(
        add_completion=False,
        help="Bluesky command-line client: login → whoami → dm-list → dm-read → logout",
    )

    @app.callback()
    def main(
        ctx: typer.Context,
        debug: Annotated[
            bool,
            typer.Option("--debug", help="Show full error classification and stack traces"),
        ] = False,
        verbose: Annotated[
            bool,
            typer.Option("--verbose", "-v", help="Log retries and session transitions"),
        ] = False,
        no_color: Annotated[
            bool,
            typer.Option("--no-color", help="Disable coloured output"),
        ] = False,
        version: Annotated[
            bool | None,
            typer.Option(
                "--version",
                callback=_version_callback,
                is_eager=True,
                help="Show the version and exit",
            ),
        ] = None,
    ) -> None:
        """Initialise CLI context."""
        _ = version
        try:
            config = _load_config(debug=debug, verbose=verbose, no_color=no_color)
        except BskyError as exc:
            _, err_console = _consoles(not no_color)
            err_console.print(f"[red]Error:[/red] {escape(format_error(exc, debug=debug))}")
            raise typer.Exit(code=int(exit_code_for(exc))) from exc
        set_log_level(debug=config.debug, verbose=config.verbose)
        console, err_console = _consoles(config.color_output)
        ctx.obj = CliContext(
            config=config,
            deps_builder=deps_builder,
            console=console,
            err_console=err_console,
        )

    @app.command()
    def login(
        ctx: typer.Context,
        password: Annotated[
            str | None,
            typer.Option(
                "--password",
                "-p",
                help="Password (not recommended: visible in shell history)",
            ),
        ] = None,
        service: Annotated[
            str | None,
            typer.Option(
                "--service",
                "-s",
                help="Custom PDS service URL (default: https://bsky.social)",
            ),
        ] = None,
    ) -> None:
        """Log in to Bluesky and store an encrypted session."""
        state = _get_context(ctx)
        deps = state.build_dependencies()
        try:
            existing = deps.store.read()
            if existing is not None:
                replace_session = typer.confirm(
                    f"Already logged in as {existing.handle}. Login again?", default=False
                )
                if not replace_session:
                    state.console.print("[blue]Login cancelled.[/blue]")
                    return

            identifier = typer.prompt("Handle or email", default=state.config.default_username)
            if not identifier.strip():
                state.err_console.print("[red]Error:[/red] Handle is required")
                raise typer.Exit(code=int(ExitCode.ERROR))
            if password is not None:
                state.err_console.print(
                    "[yellow]Warning: Passing password via command line is insecure![/yellow]"
                )
                secret = password
            else:
                secret = typer.prompt("Password", hide_input=True)
        except typer.Abort:
            raise typer.Exit(code=int(ExitCode.INTERRUPTED)) from None
        except BskyError as exc:
            state.fail(exc)

        if not secret.strip():
            state.err_console.print("[red]Error:[/red] Password cannot be empty")
            raise typer.Exit(code=int(ExitCode.ERROR))

        manager = AuthManager(
            deps.store,
            deps.client_factory,
            service_url=state.config.service_url,
            on_retry=state.notify_retry,
            sleep=deps.sleep,
        )

        async def _login() -> SessionRecord:
            try:
                return await manager.login(identifier.strip(), secret, service)
            finally:
                await manager.aclose()

        record = _run(state, _login)
        state.console.print("[green]✓ Successfully logged in![/green]")
        state.console.print(f"  Handle: {escape(record.handle)}")
        state.console.print(f"  DID: {escape(record.did)}")
        if service:
            state.console.print(f"  Service: {escape(record.service)}")

    @app.command()
    def logout(ctx: typer.Context) -> None:
        """Log out and clear the stored session."""
        state = _get_context(ctx)
        deps = state.build_dependencies()
        corrupt = False
        try:
            record = deps.store.read()
        except SessionDecodeError:
            record = None
            corrupt = True
        except BskyError as exc:
            state.fail(exc)

        if record is None and not corrupt:
            state.console.print("[yellow]Not currently logged in[/yellow]")
            return
        if record is not None:
            state.console.print(f"Logging out {escape(record.handle)}...")

        manager = AuthManager(
            deps.store,
            deps.client_factory,
            service_url=state.config.service_url,
            sleep=deps.sleep,
        )
        _run(state, manager.logout)
        state.console.print("[green]✓ Successfully logged out[/green]")

    @app.command()
    def whoami(
        ctx: typer.Context,
        json_output: Annotated[
            bool,
            typer.Option("--json", "-j", help="Output in JSON format"),
        ] = False,
    ) -> None:
        """Show the logged-in account and whether its session is still valid."""
        state = _get_context(ctx)
        deps = state.build_dependencies()
        try:
            record = deps.store.read()
        except BskyError as exc:
            state.fail(exc)

        if record is None:
            if json_output:
                typer.echo(json.dumps({"authenticated": False}, indent=2))
            else:
                state.console.print("[yellow]Not logged in[/yellow]")
                state.console.print('Run "bsky login" to authenticate')
            return

        async def _whoami() -> tuple[SessionRecord, bool]:
            manager = await require_auth(
                deps.store,
                client_factory=deps.client_factory,
                service_url=state.config.service_url,
                on_retry=state.notify_retry,
                sleep=deps.sleep,
            )
            try:
                valid = await manager.validate_session()
                return manager.get_current_session() or record, valid
            finally:
                await manager.aclose()

        try:
            current, valid = asyncio.run(_whoami())
        except AuthError as exc:
            if not json_output:
                state.fail(exc)
            payload = {"authenticated": False, "error": exc.message, "code": str(exc.code)}
            typer.echo(json.dumps(payload, indent=2))
            raise typer.Exit(code=int(exit_code_for(exc))) from exc
        except BskyError as exc:
            state.fail(exc)
        except KeyboardInterrupt:
            raise typer.Exit(code=int(ExitCode.INTERRUPTED)) from None

        if json_output:
            typer.echo(json.dumps(_session_json(current, authenticated=valid), indent=2))
            return
        status = "[green]Valid[/green]" if valid else "[red]Expired[/red]"
        state.console.print("[green]Logged in as:[/green]")
        state.console.print(f"  Handle: {escape(current.handle)}")
        state.console.print(f"  DID: {escape(current.did)}")
        state.console.print(f"  Last used: {current.last_used.isoformat()}")
        state.console.print(f"  Session: {status}")

    @app.command(name="dm-list")
    def dm_list(
        ctx: typer.Context,
        limit: Annotated[
            int,
            typer.Option("--limit", "-l", min=1, max=100, help="Number of conversations"),
        ] = 20,
        unread: Annotated[
            bool,
            typer.Option("--unread", "-u", help="Show only unread conversations"),
        ] = False,
        json_output: Annotated[
            bool,
            typer.Option("--json", help="Output in JSON format"),
        ] = False,
    ) -> None:
        """List your direct-message conversations."""
        state = _get_context(ctx)
        deps = state.build_dependencies()

        async def _list() -> tuple[ConvoSummary, ...]:
            manager = await require_auth(
                deps.store,
                client_factory=deps.client_factory,
                service_url=state.config.service_url,
                on_retry=state.notify_retry,
                sleep=deps.sleep,
            )
            try:
                chat = ChatService(manager.client, on_retry=state.notify_retry, sleep=deps.sleep)
                page = await chat.list_convos(limit=limit, unread_only=unread)
                return page.items
            finally:
                await manager.aclose()

        convos = _run(state, _list)
        if json_output:
            typer.echo(json.dumps({"convos": [_convo_json(c) for c in convos]}, indent=2))
            return
        if not convos:
            empty = "No unread conversations" if unread else "No conversations"
            state.console.print(f"[dim]{empty}[/dim]")
            return

        table = Table(title="Unread Direct Messages" if unread else "Direct Messages")
        table.add_column("With")
        table.add_column("Unread", justify="right")
        table.add_column("Last message")
        for convo in convos:
            table.add_row(
                escape(", ".join(convo.member_handles)),
                str(convo.unread_count),
                escape(convo.last_message_text or ""),
            )
        state.console.print(table)

    @app.command(name="dm-read")
    def dm_read(
        ctx: typer.Context,
        handle: Annotated[
            str,
            typer.Argument(help="Handle of the other participant (e.g. @alice.bsky.social)"),
        ],
        limit: Annotated[
            int,
            typer.Option("--limit", "-l", min=1, max=100, help="Number of messages"),
        ] = 50,
        json_output: Annotated[
            bool,
            typer.Option("--json", help="Output in JSON format"),
        ] = False,
    ) -> None:
        """Read the direct messages exchanged with one account."""
        state = _get_context(ctx)
        deps = state.build_dependencies()
        display = _display_handle(handle)

        async def _read() -> tuple[str, ConvoSummary | None, tuple[ChatMessage, ...]]:
            manager = await require_auth(
                deps.store,
                client_factory=deps.client_factory,
                service_url=state.config.service_url,
                on_retry=state.notify_retry,
                sleep=deps.sleep,
            )
            try:
                session = manager.get_current_session()
                own_did = session.did if session is not None else ""
                chat = ChatService(manager.client, on_retry=state.notify_retry, sleep=deps.sleep)
                convo = await chat.find_convo_by_handle(handle)
                if convo is None:
                    return own_did, None, ()
                page = await chat.get_messages(convo.id, limit=limit)
                return own_did, convo, page.items
            finally:
                await manager.aclose()

        own_did, convo, messages = _run(state, _read)
        if convo is None:
            state.console.print(f"[yellow]No conversation found with {escape(display)}[/yellow]")
            return
        if json_output:
            payload = {"convo": convo.id, "messages": [asdict(m) for m in messages]}
            typer.echo(json.dumps(payload, indent=2))
            return
        if not messages:
            state.console.print(
                f"[yellow]No messages in conversation with {escape(display)}[/yellow]"
            )
            return

        state.console.print(f"[bold cyan]Conversation with {escape(display)}[/bold cyan]")
        state.console.print("[dim]" + "─" * 60 + "[/dim]")
        # The server returns newest first.
        for message in reversed(messages):
            sender = "You: " if message.sender_did == own_did else "Them:"
            text = "[dim](deleted)[/dim]" if message.deleted else escape(message.text)
            sent_at = escape(message.sent_at)
            state.console.print(f"[bold]{sender}[/bold] {text}  [dim]{sent_at}[/dim]")
        state.console.print("[dim]" + "─" * 60 + "[/dim]")

    @app.command(name="config")
    def show_config(ctx: typer.Context) -> None:
        """Show configuration and session locations."""
        state = _get_context(ctx)
        config = state.config
        state.console.print(f"Config directory: {escape(str(config.config_dir))}")
        state.console.print(f"Config file: {escape(str(config.config_path))}")
        state.console.print(f"Session file: {escape(str(config.session_path))}")
        state.console.print(f"Service URL: {escape(config.service_url)}")
        state.console.print(f"Color output: {config.color_output}")
        if config.default_username:
            state.console.print(f"Default username: {escape(config.default_username)}")

    _ = (main, login, logout, whoami, dm_list, dm_read, show_config)

    return app
