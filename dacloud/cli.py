"""Typer CLI entrypoint."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Iterable

import typer

from dacloud.api import Client
from dacloud.core.config import load_settings
from dacloud.core.errors import DacloudError
from dacloud.core.model import SERVERS_CACHE_AUTO, SERVERS_CACHE_MANUAL, UNREACHABLE, Endpoint

app = typer.Typer(help="DeviceAtlas Cloud client tools")

ENDPOINTS_INFO_URL = "https://deviceatlas.com/resources/cloud-service-end-points"


def _build_client(licence_key: str | None, config: Path | None) -> Client | None:
    settings = load_settings(config)
    if licence_key:
        settings = replace(settings, licence_key=licence_key)
    if not settings.licence_key:
        return None
    return Client(settings)


def _usage(command: str) -> None:
    typer.echo("No licence key provided.", err=True)
    typer.echo(f"usage: dacloud {command} LICENCE-KEY", err=True)


def _format_latency(latency: float) -> str:
    return "n/a" if latency == UNREACHABLE else f"{latency:.3f}ms"


def _print_cached(endpoints: Iterable[Endpoint] | None) -> None:
    if not endpoints:
        typer.echo("  <none>")
        return
    for endpoint in endpoints:
        typer.echo(f"  {endpoint.host}:{endpoint.port}")
        for latency in endpoint.latencies:
            typer.echo(f"    {_format_latency(latency)}")
        if endpoint.latencies:
            typer.echo(f"    * average: {_format_latency(endpoint.average)}")


def _print_latencies(endpoints: Iterable[Endpoint]) -> None:
    best: Endpoint | None = None
    for endpoint in endpoints:
        typer.echo(f"  {endpoint.host}:{endpoint.port}")
        if not endpoint.reachable:
            typer.echo("    (Couldn't connect to host)")
        for value in endpoint.latencies:
            typer.echo(f"    {_format_latency(value)}")
        typer.echo(f"    * average: {_format_latency(endpoint.average)}")
        if endpoint.reachable and (best is None or endpoint.average < best.average):
            best = endpoint

    if best is None:
        typer.echo("No good server found!")
    else:
        typer.echo(f"Best end-point >> {best.host} <<")


@app.command("cached-endpoints")
def cached_endpoints(
    licence_key: str | None = typer.Argument(None, help="DeviceAtlas licence key"),
    config: Path | None = typer.Option(None, "--config", help="Settings YAML file"),
) -> None:
    """Print the cached auto-ranked and manual fail-over end-point lists."""
    try:
        client = _build_client(licence_key, config)
        if client is None:
            _usage("cached-endpoints")
            return
        try:
            typer.echo("Cached auto ranked list:")
            _print_cached(client.get_cached_server_list(SERVERS_CACHE_AUTO))
            typer.echo("Cached manual fail-over list:")
            _print_cached(client.get_cached_server_list(SERVERS_CACHE_MANUAL))
        finally:
            client.shutdown()
    except DacloudError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("latency")
def latency(
    licence_key: str | None = typer.Argument(None, help="DeviceAtlas licence key"),
    config: Path | None = typer.Option(None, "--config", help="Settings YAML file"),
) -> None:
    """Time requests to every configured end-point and report its latencies."""
    try:
        client = _build_client(licence_key, config)
        if client is None:
            _usage("latency")
            return
        try:
            typer.echo("Running tests, this may take a while...")
            _print_latencies(client.get_servers_latencies())
            typer.echo(f"See {ENDPOINTS_INFO_URL} for more information.")
        finally:
            client.shutdown()
    except DacloudError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("lookup")
def lookup(
    user_agent: str,
    licence_key: str | None = typer.Option(None, "--licence-key", help="DeviceAtlas licence key"),
    config: Path | None = typer.Option(None, "--config", help="Settings YAML file"),
) -> None:
    """Look up the device properties of USER_AGENT."""
    try:
        client = _build_client(licence_key, config)
        if client is None:
            typer.echo("Error: no licence key configured", err=True)
            raise typer.Exit(code=1)
        try:
            result = client.lookup_user_agent(user_agent)
            typer.echo(f"source={result.source.value}")
            if client.last_used_url:
                typer.echo(f"endpoint={client.last_used_url}")
            if result.properties is None:
                typer.echo("No properties returned")
            else:
                for name, prop in sorted(result.properties.items()):
                    typer.echo(f"  {name}: {prop} ({prop.data_type.label})")
        finally:
            client.shutdown()
    except DacloudError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
