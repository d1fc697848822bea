"""Locasso CLI — run the API and poke at sign-in from a terminal.

Usage:
    locasso serve                                  # Run the API with uvicorn
    locasso signin --id u-123 --email me@x.com     # Dev-mode sign-in
    locasso me --token <jwt>                       # Echo identity claims
    locasso diagnostic --token <jwt>               # Masked claims dump
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("LOCASSO_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the Locasso backend."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when an event loop is already running
    (e.g. CliRunner inside an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _identity_headers(token: Optional[str]) -> dict[str, str]:
    from locasso.config import settings

    return {settings.identity_token_header: token} if token else {}


def _fail(response: httpx.Response) -> None:
    try:
        detail = response.json().get("detail", response.text)
    except ValueError:
        detail = response.text
    click.secho(f"Error {response.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="locasso")
def main():
    """Locasso — identity backend tooling."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: LOCASSO_HOST)")
@click.option("--port", default=None, type=int, help="Bind port (default: LOCASSO_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server."""
    import uvicorn

    from locasso.config import settings

    uvicorn.run(
        "locasso.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# locasso signin
# ---------------------------------------------------------------------------


@main.command()
@click.option("--id", "external_id", help="External id (dev mode)")
@click.option("--email", help="Email (dev mode)")
@click.option("--name", default="", help="Display name")
@click.option("--photo-url", default="", help="Profile photo URL")
@click.option("--provider", default="dev", show_default=True, help="Provider tag")
@click.option("--token", help="Identity token (JWT) instead of dev-mode params")
def signin(
    external_id: Optional[str],
    email: Optional[str],
    name: str,
    photo_url: str,
    provider: str,
    token: Optional[str],
):
    """Sign in and print the resolved user.

    Without --token this uses developer mode, which the server only
    accepts outside production.
    """
    if not token and not (external_id and email):
        click.secho("Error: pass --token, or both --id and --email", fg="red", err=True)
        sys.exit(1)
    _run(_signin_impl(external_id, email, name, photo_url, provider, token))


async def _signin_impl(external_id, email, name, photo_url, provider, token):
    params: dict[str, str] = {}
    body: dict[str, str] = {}
    if not token:
        params = {"dev": "true"}
        body = {
            "id": external_id,
            "email": email,
            "name": name,
            "photo_url": photo_url,
            "provider": provider,
        }

    async with _client() as c:
        r = await c.post(
            "/api/v1/auth/signin",
            params=params,
            json=body,
            headers=_identity_headers(token),
        )
    if r.status_code != 200:
        _fail(r)

    user = r.json()
    label = "New user" if user["isNewUser"] else "Welcome back"
    click.secho(f"{label}: {user['email']} ({user['role']})", fg="green")
    click.echo(_pretty_json(user))


# ---------------------------------------------------------------------------
# locasso me / diagnostic
# ---------------------------------------------------------------------------


@main.command()
@click.option("--token", required=True, help="Identity token (JWT)")
def me(token: str):
    """Show the identity the server sees for a token."""
    _run(_get_impl("/api/v1/auth/me", token))


@main.command()
@click.option("--token", help="Identity token (JWT)")
def diagnostic(token: Optional[str]):
    """Show the masked claims the server received."""
    _run(_get_impl("/api/v1/auth/diagnostic", token))


async def _get_impl(path: str, token: Optional[str]):
    async with _client() as c:
        r = await c.get(path, headers=_identity_headers(token))
    if r.status_code != 200:
        _fail(r)
    click.echo(_pretty_json(r.json()))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
