from __future__ import annotations

import asyncio
import importlib.metadata as md
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from .config import WpactlConfig, configure_logging, default_config, load_config, resolve_config_path
from .core.orchestrator import ConnectionOrchestrator
from .domain.models import OperationResult
from .infrastructure.supplicant.daemon import LogFilter

# Typer application: tests import this
app = typer.Typer(no_args_is_help=True, add_completion=False, help="wpactl - wifi client connection control")
console = Console()


@dataclass
class CliState:
    config_path: Path | None = None
    interface: str | None = None
    mock: bool = False
    verbose: bool = False
    as_json: bool = False


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _load(state: CliState) -> WpactlConfig:
    if state.config_path is not None and not state.config_path.expanduser().exists():
        raise typer.BadParameter(f"config file not found: {state.config_path}", param_hint="--config")
    resolved = resolve_config_path(state.config_path)
    cfg = load_config(resolved) if resolved.exists() else default_config()
    if state.interface:
        cfg = cfg.model_copy(update={"interface": cfg.interface.model_copy(update={"name": state.interface})})
    if state.mock:
        cfg = cfg.model_copy(update={"mock_mode": True})
    return cfg


def _mac_policy(
    mode: str | None,
    address: str | None,
    preassoc: str | None,
    rotation: int | None,
) -> dict[str, Any] | None:
    if mode is None:
        return None
    policy: dict[str, Any] = {"mode": mode}
    if address is not None:
        policy["address"] = address
    if preassoc is not None:
        policy["preassoc_mode"] = preassoc
    if rotation is not None:
        policy["rotation_seconds"] = rotation
    return policy


def _print_result(result: OperationResult, table: Callable[[OperationResult], Table] | None, as_json: bool) -> None:
    if table is not None and result.success and not as_json:
        console.print(table(result))
        return
    console.print_json(data=result.to_dict())


def _execute(
    ctx: typer.Context,
    operation: Callable[[ConnectionOrchestrator], Awaitable[OperationResult]],
    table: Callable[[OperationResult], Table] | None = None,
) -> None:
    state = _state(ctx)
    try:
        cfg = _load(state)
    except ValueError as exc:
        console.print(f"Config validation failed: {exc}")
        raise typer.Exit(code=2) from exc
    configure_logging(cfg.logging, verbose=state.verbose)

    orchestrator = ConnectionOrchestrator(cfg)
    result = asyncio.run(operation(orchestrator))
    _print_result(result, table, state.as_json)
    raise typer.Exit(code=0 if result.success else 1)


MAC_MODE_HELP = "device | random | persistent-random | specific"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to wpactl.yml"),
    interface: str | None = typer.Option(None, "--interface", "-i", help="Wireless interface"),
    mock: bool = typer.Option(False, "--mock", help="Use in-memory components"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    as_json: bool = typer.Option(False, "--json", help="Always print raw JSON results"),
) -> None:
    """Entry point for `wpactl` command."""
    ctx.obj = CliState(config_path=config, interface=interface, mock=mock, verbose=verbose, as_json=as_json)
    if ctx.invoked_subcommand is None:
        console.print("wpactl - use `wpactl --help` to see commands.")
        raise typer.Exit(code=0)


@app.command()
def version() -> None:
    """Print version information."""
    try:
        dist_version = md.version("wpactl")
    except md.PackageNotFoundError:
        from . import __version__

        dist_version = __version__
    console.print(f"wpactl {dist_version}")
    raise typer.Exit(code=0)


@app.command(name="config-which")
def config_which(ctx: typer.Context) -> None:
    """Show which config file would be used."""
    resolved = resolve_config_path(_state(ctx).config_path)
    suffix = "" if resolved.exists() else " (missing, built-in defaults apply)"
    console.print(f"{resolved}{suffix}")


@app.command(name="config-validate")
def config_validate(path: Path = typer.Argument(Path("configs/wpactl.yml"))) -> None:
    """Validate and show resolved configuration."""
    resolved = resolve_config_path(path)
    console.print(f"Using config: {resolved}")
    try:
        cfg = load_config(resolved)
    except Exception as exc:
        console.print(f"Config validation failed: {exc}")
        raise typer.Exit(code=1) from exc
    console.print("Config OK. Key settings:")
    console.print(f"- interface: {cfg.interface.name}")
    console.print(f"- supplicant config: {cfg.supplicant.config_path}")
    console.print(f"- supplicant log: {cfg.supplicant_log_path()}")
    console.print(f"- credentials: {cfg.credentials.base_dir}")


def _scan_table(result: OperationResult) -> Table:
    table = Table(title=f"{result.data.get('count', 0)} networks")
    for column in ("SSID", "BSSID", "Freq", "Signal", "Flags"):
        table.add_column(column)
    for net in sorted(result.data.get("networks", []), key=lambda n: n["signal"], reverse=True):
        table.add_row(net["ssid"] or "<hidden>", net["bssid"], str(net["frequency"]), str(net["signal"]), net["flags"])
    return table


def _networks_table(result: OperationResult) -> Table:
    table = Table(title="Saved networks")
    for column in ("ID", "SSID", "BSSID", "Flags"):
        table.add_column(column)
    for net in result.data.get("networks", []):
        table.add_row(str(net["network_id"]), net["ssid"], net["bssid"], net["flags"])
    return table


@app.command()
def scan(ctx: typer.Context) -> None:
    """Scan for nearby networks."""
    _execute(ctx, lambda o: o.scan(), table=_scan_table)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show connection status."""
    _execute(ctx, lambda o: o.status())


@app.command()
def connect(
    ctx: typer.Context,
    ssid: str = typer.Argument(..., help="Network name"),
    psk: str | None = typer.Option(None, "--psk", "-p", help="WPA passphrase; omit for open networks"),
    mac_mode: str | None = typer.Option(None, "--mac-mode", help=MAC_MODE_HELP),
    mac_address: str | None = typer.Option(None, "--mac-address", help="Address for --mac-mode specific"),
    preassoc: str | None = typer.Option(None, "--preassoc", help="disabled | random | persistent-random"),
    rotation: int | None = typer.Option(None, "--rotation", help="Random address lifetime in seconds"),
) -> None:
    """Connect to an open or WPA-PSK network."""
    policy = _mac_policy(mac_mode, mac_address, preassoc, rotation)
    _execute(ctx, lambda o: o.connect(ssid, psk=psk, mac_policy=policy))


@app.command(name="connect-eap")
def connect_eap(
    ctx: typer.Context,
    ssid: str = typer.Argument(...),
    identity: str = typer.Option(..., "--identity", "-u"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    method: str = typer.Option("PEAP", "--method", help="PEAP | TTLS | PWD"),
    phase2: str = typer.Option("MSCHAPV2", "--phase2"),
    mac_mode: str | None = typer.Option(None, "--mac-mode", help=MAC_MODE_HELP),
    mac_address: str | None = typer.Option(None, "--mac-address"),
) -> None:
    """Connect to a WPA enterprise network with username and password."""
    policy = _mac_policy(mac_mode, mac_address, None, None)
    _execute(
        ctx,
        lambda o: o.connect_eap(ssid, identity, password, method=method.upper(), phase2=phase2, mac_policy=policy),
    )


@app.command(name="connect-tls")
def connect_tls(
    ctx: typer.Context,
    ssid: str = typer.Argument(...),
    credential_id: str | None = typer.Option(None, "--credential-id"),
    identity: str | None = typer.Option(None, "--identity", "-u"),
    client_cert: str | None = typer.Option(None, "--client-cert"),
    private_key: str | None = typer.Option(None, "--private-key"),
    ca_cert: str | None = typer.Option(None, "--ca-cert"),
    key_password: str | None = typer.Option(None, "--key-password"),
    mac_mode: str | None = typer.Option(None, "--mac-mode", help=MAC_MODE_HELP),
    mac_address: str | None = typer.Option(None, "--mac-address"),
) -> None:
    """Connect with EAP-TLS using a stored credential or certificate files."""
    cert_paths = None
    if client_cert or private_key:
        cert_paths = {"client_cert_path": client_cert, "private_key_path": private_key, "ca_cert_path": ca_cert}
    policy = _mac_policy(mac_mode, mac_address, None, None)
    _execute(
        ctx,
        lambda o: o.connect_tls(
            ssid,
            identity=identity,
            cert_paths=cert_paths,
            credential_id=credential_id,
            key_password=key_password,
            mac_policy=policy,
        ),
    )


@app.command(name="connect-hs20")
def connect_hs20(
    ctx: typer.Context,
    credential_id: str = typer.Option(..., "--credential-id"),
    realm: str = typer.Option(..., "--realm"),
    domain: str = typer.Option(..., "--domain"),
    priority: int | None = typer.Option(None, "--priority"),
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds to wait for COMPLETED"),
    mac_mode: str | None = typer.Option(None, "--mac-mode", help=MAC_MODE_HELP),
    mac_address: str | None = typer.Option(None, "--mac-address"),
    preassoc: str | None = typer.Option(None, "--preassoc"),
    rotation: int | None = typer.Option(None, "--rotation"),
) -> None:
    """Connect through Hotspot 2.0 / Passpoint."""
    policy = _mac_policy(mac_mode, mac_address, preassoc, rotation)
    _execute(
        ctx,
        lambda o: o.connect_hs20(
            credential_id, realm, domain, priority=priority, timeout_seconds=timeout, mac_policy=policy
        ),
    )


@app.command()
def disconnect(ctx: typer.Context) -> None:
    """Disconnect and release the lease."""
    _execute(ctx, lambda o: o.disconnect())


@app.command()
def reconnect(ctx: typer.Context) -> None:
    """Reconnect to the selected network."""
    _execute(ctx, lambda o: o.reconnect())


@app.command()
def networks(ctx: typer.Context) -> None:
    """List saved networks."""
    _execute(ctx, lambda o: o.list_networks(), table=_networks_table)


@app.command()
def forget(ctx: typer.Context, network_id: int = typer.Argument(...)) -> None:
    """Remove a saved network."""
    _execute(ctx, lambda o: o.forget(network_id))


@app.command()
def logs(
    ctx: typer.Context,
    log_filter: LogFilter = typer.Option(LogFilter.ALL, "--filter", "-f", case_sensitive=False),
    all_lines: bool = typer.Option(False, "--all", help="Whole log instead of since the last command"),
    lines: int = typer.Option(100, "--lines", "-n", min=1),
) -> None:
    """Show wpa_supplicant debug output."""
    _execute(ctx, lambda o: o.get_debug_logs(log_filter, since_last_command=not all_lines, lines=lines))


@app.command(name="eap-diag")
def eap_diag(ctx: typer.Context) -> None:
    """Show 802.1X/EAP state machine diagnostics."""
    _execute(ctx, lambda o: o.eap_diagnostics())


@app.command(name="hs20-state")
def hs20_state(ctx: typer.Context) -> None:
    """Show Hotspot 2.0 settings in the supplicant config."""
    _execute(ctx, lambda o: o.hs20_state())


@app.command()
def down(ctx: typer.Context) -> None:
    """Release the lease and stop wpa_supplicant."""
    _execute(ctx, lambda o: o.shutdown())


def launch() -> None:
    """Entry point when executed as a module/script."""
    cli()  # use the prepared Click command


cli = typer.main.get_command(app)

__all__ = ["app", "cli"]

if __name__ == "__main__":
    launch()
