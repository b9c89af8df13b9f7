"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from scratchlink.core.errors import ScratchLinkError
from scratchlink.core.service import PIN_WRITE_MODES, LinkService, parse_gatt_id

app = typer.Typer(help="Talk to Scratch extension peripherals through a local bridge process")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log bridge traffic and lifecycle"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> LinkService:
    service = LinkService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


@app.command("profiles")
def list_profiles() -> None:
    """List available extension profiles."""
    try:
        service = _build_service()
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name} [{profile.kind}] {profile.url}")
    except ScratchLinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    profile: str,
    timeout: float | None = typer.Option(None, "--timeout", help="Discovery window in seconds"),
) -> None:
    """Discover peripherals reachable through the profile's bridge."""
    try:
        service = _build_service()
        peripherals = service.discover(profile, timeout_s=timeout)
        if not peripherals:
            typer.echo("No peripherals found")
            return

        for record in peripherals:
            rssi = f" rssi={record.rssi}" if record.rssi is not None else ""
            typer.echo(f"{record.peripheral_id} {record.name or '<unnamed>'}{rssi}")
    except ScratchLinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("pins")
def read_pins(
    profile: str = typer.Argument("scrattino"),
    device: str | None = typer.Option(None, "--device", help="Port path or partial name"),
) -> None:
    """Connect to a Firmata board and print every pin's mode and value."""
    try:
        service = _build_service()
        record, readings = service.read_pins(profile, device_hint=device)
        typer.echo(f"Board: {record.peripheral_id} ({record.name or '<unnamed>'})")
        for reading in readings:
            mode = "-" if reading.mode is None else f"0x{reading.mode:02x}"
            typer.echo(f"  D{reading.pin}: mode={mode} value={reading.value}")
    except ScratchLinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("write")
def write_pin(
    pin: int,
    value: float,
    profile: str = typer.Option("scrattino", "--profile", help="Profile ID"),
    mode: str = typer.Option("digital", "--mode", help=f"One of: {', '.join(PIN_WRITE_MODES)}"),
    device: str | None = typer.Option(None, "--device", help="Port path or partial name"),
) -> None:
    """Write a pin on a Firmata board."""
    try:
        service = _build_service()
        record = service.write_pin(profile, pin, value, mode=mode, device_hint=device)
        typer.echo(f"Wrote {mode} D{pin}={value:g} on {record.peripheral_id}")
    except ScratchLinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("read-char")
def read_characteristic(
    service_id: str,
    characteristic_id: str,
    profile: str = typer.Option("ble_device", "--profile", help="Profile ID"),
    device: str | None = typer.Option(None, "--device", help="Peripheral ID or partial name"),
) -> None:
    """Read a GATT characteristic from a BLE peripheral."""
    try:
        service = _build_service()
        record, value = service.read_characteristic(
            profile,
            parse_gatt_id(service_id),
            parse_gatt_id(characteristic_id),
            device_hint=device,
        )
        typer.echo(f"{record.peripheral_id}: {value}")
    except ScratchLinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("write-char")
def write_characteristic(
    service_id: str,
    characteristic_id: str,
    message: str,
    profile: str = typer.Option("ble_device", "--profile", help="Profile ID"),
    device: str | None = typer.Option(None, "--device", help="Peripheral ID or partial name"),
) -> None:
    """Write a message to a GATT characteristic.

    MESSAGE is sent with the profile's encoding (base64 unless configured otherwise).
    """
    try:
        service = _build_service()
        record, _ = service.write_characteristic(
            profile,
            parse_gatt_id(service_id),
            parse_gatt_id(characteristic_id),
            message,
            device_hint=device,
        )
        typer.echo(f"Wrote {len(message)} chars to {record.peripheral_id}")
    except ScratchLinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
