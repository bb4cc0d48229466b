"""Shopdeck CLI — log in, call the admin API, watch realtime events.

Usage:
    shopdeck login admin@example.com              # Prompts for the password
    shopdeck status                               # Who am I, when does my token expire
    shopdeck request GET /products                # Any endpoint, refresh handled for you
    shopdeck request PUT /products/42 -d '{"stock": 3}'
    shopdeck listen --inventory                   # Stream realtime events until Ctrl-C
    shopdeck logout
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import click

from shopdeck import __version__
from shopdeck.app import Services, build_services
from shopdeck.auth.storage import FileStorage
from shopdeck.auth.tokens import TokenRepository
from shopdeck.client.errors import ApiError
from shopdeck.config import Settings
from shopdeck.events import types as ev
from shopdeck.logging import configure_logging

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_TOKEN_STORE = "~/.shopdeck/tokens.json"

LISTEN_EVENTS = (
    ev.NOTIFICATION,
    ev.UNREAD_COUNT_UPDATED,
    ev.ORDER_UPDATED,
    ev.USER_STATUS,
    ev.DASHBOARD_UPDATE,
    ev.ADMIN_ANNOUNCEMENT,
    ev.INVENTORY_UPDATED,
    ev.STOCK_UPDATED,
    ev.LOW_STOCK_ALERT,
)


def _services(settings: Settings) -> Services:
    """The CLI always persists tokens so separate invocations share a session."""
    path = settings.token_store_path or DEFAULT_TOKEN_STORE
    return build_services(settings, tokens=TokenRepository(FileStorage(path)))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="shopdeck")
@click.pass_context
def main(ctx: click.Context):
    """Shopdeck — storefront admin client."""
    settings = Settings()
    configure_logging(settings.log_level, settings.log_json)
    ctx.obj = settings


# ---------------------------------------------------------------------------
# shopdeck login / logout
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
@click.option("--remember-me", is_flag=True, help="Ask for a long-lived refresh token")
@click.pass_obj
def login(settings: Settings, email: str, password: str, remember_me: bool):
    """Log in as EMAIL and store the session tokens."""
    _run(_login_impl(settings, email, password, remember_me))


async def _login_impl(settings: Settings, email: str, password: str, remember_me: bool):
    services = _services(settings)
    try:
        result = await services.client.login(email, password, remember_me)
    except ApiError as e:
        _fail(f"login failed: {e}")
    finally:
        await services.aclose()

    if not services.client.is_authenticated():
        _fail(f"login rejected: {_pretty_json(result)}")

    user = services.client.current_user() or {}
    click.secho(f"Logged in as {user.get('email', email)}", fg="green")


@main.command()
@click.pass_obj
def logout(settings: Settings):
    """End the session (server-side invalidation is best-effort)."""
    _run(_logout_impl(settings))


async def _logout_impl(settings: Settings):
    services = _services(settings)
    try:
        await services.client.logout()
    finally:
        await services.aclose()
    click.echo("Logged out")


# ---------------------------------------------------------------------------
# shopdeck status
# ---------------------------------------------------------------------------


@main.command()
@click.pass_obj
def status(settings: Settings):
    """Show the stored session."""
    path = settings.token_store_path or DEFAULT_TOKEN_STORE
    tokens = TokenRepository(FileStorage(path))
    pair = tokens.get()

    click.secho(f"API:      {settings.api_url}", bold=True)
    if pair is None:
        click.secho("Session:  not logged in", fg="yellow")
        return

    user = tokens.current_user() or {}
    click.echo(f"User:     {user.get('email', '—')} ({user.get('role', 'unknown role')})")
    click.echo(f"Refresh:  {'yes' if pair.refresh_token else 'no'}")

    exp = pair.claims().get("exp")
    if isinstance(exp, (int, float)):
        expires = datetime.fromtimestamp(exp, tz=timezone.utc)
        expired = expires <= datetime.now(timezone.utc)
        click.echo(
            "Expires:  "
            + click.style(expires.isoformat(), fg="red" if expired else "green")
            + (" (will refresh on next request)" if expired else "")
        )


# ---------------------------------------------------------------------------
# shopdeck request
# ---------------------------------------------------------------------------


@main.command()
@click.argument("method", type=click.Choice(["GET", "POST", "PUT", "PATCH", "DELETE"], case_sensitive=False))
@click.argument("endpoint")
@click.option("--data", "-d", help="JSON request body")
@click.pass_obj
def request(settings: Settings, method: str, endpoint: str, data: Optional[str]):
    """Call ENDPOINT with the stored session and print the response."""
    body = None
    if data:
        try:
            body = json.loads(data)
        except ValueError as e:
            _fail(f"--data is not valid JSON: {e}")
    _run(_request_impl(settings, method, endpoint, body))


async def _request_impl(settings: Settings, method: str, endpoint: str, body: Any):
    services = _services(settings)
    try:
        result = await services.client.request(endpoint, method=method, body=body)
    except ApiError as e:
        _fail(str(e))
    finally:
        await services.aclose()
    click.echo(_pretty_json(result) if not isinstance(result, str) else result)


# ---------------------------------------------------------------------------
# shopdeck listen
# ---------------------------------------------------------------------------


@main.command()
@click.option("--inventory", is_flag=True, help="Subscribe to inventory updates")
@click.option("--order", "order_ids", multiple=True, help="Subscribe to an order (repeatable)")
@click.pass_obj
def listen(settings: Settings, inventory: bool, order_ids: tuple[str, ...]):
    """Print realtime events until interrupted."""
    try:
        _run(_listen_impl(settings, inventory, order_ids))
    except KeyboardInterrupt:
        click.echo()


async def _listen_impl(settings: Settings, inventory: bool, order_ids: tuple[str, ...]):
    services = _services(settings)
    channel = services.channel

    def printer(name: str):
        def _print(payload: Any) -> None:
            if hasattr(payload, "model_dump"):
                payload = payload.model_dump(mode="json", by_alias=True)
            click.echo(f"{click.style(name, fg='cyan')} {json.dumps(payload, default=str)}")
        return _print

    for topic in LISTEN_EVENTS:
        services.events.add_listener(topic, printer(topic.name))
    services.events.add_listener(
        ev.CONNECTION_STATE_CHANGED,
        lambda state: click.secho(f"[{state.value}]", fg="yellow", err=True),
    )
    degraded: list[dict] = []
    services.events.add_listener(ev.CONNECTION_DEGRADED, degraded.append)

    # Requested while offline: replayed as soon as the channel connects
    if inventory:
        await channel.subscribe_to_inventory_updates()
    for order_id in order_ids:
        await channel.subscribe_to_order_updates(order_id)

    try:
        if not await channel.connect():
            _fail("not logged in, run `shopdeck login` first")
        await channel.wait_closed()
    finally:
        await services.aclose()

    if degraded:
        _fail(f"gave up after {degraded[-1]['attempts']} connection attempts")
    click.secho("Session ended, run `shopdeck login` to listen again", fg="yellow", err=True)
