"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

import typer

from nmctl.core.errors import NmctlError
from nmctl.core.model import ConnProfile
from nmctl.core.nmp import CoreLoadRsp, FsDownloadRsp, FsUploadRsp, ImageStateRsp, ImageUploadRsp, MgmtProto
from nmctl.core.service import MgmtService

app = typer.Typer(help="Manage devices over the newtmgr / SMP management protocol")
conn_app = typer.Typer(help="Manage connection profiles")
fs_app = typer.Typer(help="Access files on device")
image_app = typer.Typer(help="Manage images and core dumps on device")
app.add_typer(conn_app, name="conn")
app.add_typer(fs_app, name="fs")
app.add_typer(image_app, name="image")

_LOG_LEVELS = ("debug", "info", "warning", "error")


@app.callback()
def main(
    ctx: typer.Context,
    conn: str | None = typer.Option(None, "--conn", "-c", help="Connection profile name"),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Per-request timeout in seconds"),
    tries: int | None = typer.Option(None, "--tries", "-r", min=1, help="Attempts per request"),
    log_level: str = typer.Option("warning", "--log-level", "-l", help="debug, info, warning or error"),
) -> None:
    if log_level.lower() not in _LOG_LEVELS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_LEVELS)}", param_hint="--log-level")
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"conn": conn, "timeout": timeout, "tries": tries}


def _build_service(ctx: typer.Context) -> MgmtService:
    opts = ctx.obj or {}
    service = MgmtService(timeout_s=opts.get("timeout"), tries=opts.get("tries"))
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _conn(ctx: typer.Context) -> str | None:
    return (ctx.obj or {}).get("conn")


def _parse_hash(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a hex string", param_hint="HASH") from None


def _print_image_state(rsp: ImageStateRsp) -> None:
    typer.echo("Images:")
    for image in rsp.images:
        flags = [
            name
            for name, enabled in (
                ("active", image.active),
                ("confirmed", image.confirmed),
                ("pending", image.pending),
                ("permanent", image.permanent),
            )
            if enabled
        ]
        typer.echo(f" slot={image.slot}")
        typer.echo(f"    version: {image.version}")
        typer.echo(f"    bootable: {str(image.bootable).lower()}")
        typer.echo(f"    flags: {' '.join(flags)}")
        typer.echo(f"    hash: {image.hash.hex() if image.hash else 'Unavailable'}")
    typer.echo(f"Split status: {rsp.split_status}")


@conn_app.command("list")
def conn_list(ctx: typer.Context) -> None:
    """List connection profiles."""
    try:
        service = _build_service(ctx)
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No connection profiles defined")
            return

        for profile in profiles:
            port = f":{profile.port}" if profile.port else ""
            typer.echo(
                f"{profile.name}: type={profile.type} address={profile.address}{port} "
                f"proto={profile.mgmt_proto.value}"
            )
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@conn_app.command("add")
def conn_add(
    ctx: typer.Context,
    name: str,
    conn_type: str = typer.Option(..., "--type", help="udp or ble"),
    address: str = typer.Option(..., "--address", help="Host name, IP, or BLE address"),
    port: int | None = typer.Option(None, "--port", help="UDP port"),
    mtu: int | None = typer.Option(None, "--mtu", help="Outbound frame budget in bytes"),
    proto: str = typer.Option(MgmtProto.NMP.value, "--proto", help="nmp or smp2"),
    timeout: float = typer.Option(10.0, "--timeout", help="Per-request timeout in seconds"),
    tries: int = typer.Option(1, "--tries", help="Attempts per request"),
) -> None:
    """Create or replace a connection profile."""
    try:
        try:
            mgmt_proto = MgmtProto(proto)
        except ValueError:
            raise typer.BadParameter("must be 'nmp' or 'smp2'", param_hint="--proto") from None
        service = _build_service(ctx)
        path = service.add_profile(
            ConnProfile(
                name=name,
                type=conn_type,
                address=address,
                port=port,
                mtu=mtu,
                mgmt_proto=mgmt_proto,
                timeout_s=timeout,
                tries=tries,
            )
        )
        typer.echo(f"Saved profile '{name}' to {path}")
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@conn_app.command("delete")
def conn_delete(ctx: typer.Context, name: str) -> None:
    """Delete a connection profile."""
    try:
        service = _build_service(ctx)
        service.remove_profile(name)
        typer.echo(f"Deleted profile '{name}'")
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@fs_app.command("upload")
def fs_upload(ctx: typer.Context, src_file: Path, dst_name: str) -> None:
    """Upload a local file to the device."""
    try:
        data = src_file.read_bytes()
    except OSError as exc:
        typer.echo(f"Error: Cannot read {src_file}: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not data:
        typer.echo(f"Error: {src_file} is empty; nothing to upload", err=True)
        raise typer.Exit(code=1)

    def _progress(rsp: FsUploadRsp) -> None:
        typer.echo(f"{rsp.off}")

    try:
        service = _build_service(ctx)
        res = service.fs_upload(data, dst_name, conn=_conn(ctx), progress_cb=_progress)
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if res.status() != 0:
        typer.echo(f"Error: {res.status()}")
        return
    typer.echo("Done")


@fs_app.command("download")
def fs_download(ctx: typer.Context, src_name: str, dst_file: Path) -> None:
    """Download a file from the device."""
    try:
        out = dst_file.open("wb")
    except OSError as exc:
        typer.echo(f"Error: Cannot open file {dst_file} - {exc}", err=True)
        raise typer.Exit(code=1) from None

    def _progress(rsp: FsDownloadRsp) -> None:
        typer.echo(f"{rsp.off}")
        out.seek(rsp.off)
        out.write(rsp.data)

    try:
        with out:
            service = _build_service(ctx)
            res = service.fs_download(src_name, conn=_conn(ctx), progress_cb=_progress)
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except OSError as exc:
        typer.echo(f"Error: Cannot write {dst_file}: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if res.status() != 0:
        typer.echo(f"Error: {res.status()}")
        return
    typer.echo("Done")


@image_app.command("upload")
def image_upload(
    ctx: typer.Context,
    image_file: Path,
    no_erase: bool = typer.Option(False, "--no-erase", "-e", help="Skip erasing the secondary slot first"),
) -> None:
    """Upload an image to the device, erasing the target slot first."""
    try:
        data = image_file.read_bytes()
    except OSError as exc:
        typer.echo(f"Error: Cannot read {image_file}: {exc}", err=True)
        raise typer.Exit(code=1) from None

    def _progress(rsp: ImageUploadRsp) -> None:
        typer.echo(f"{rsp.off} / {len(data)} ({rsp.off * 100 // max(len(data), 1)}%)")

    try:
        service = _build_service(ctx)
        service.image_upgrade(data, conn=_conn(ctx), no_erase=no_erase, progress_cb=_progress)
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo("Done")


@image_app.command("erase")
def image_erase(ctx: typer.Context) -> None:
    """Erase the unused image slot."""
    try:
        _build_service(ctx).image_erase(conn=_conn(ctx))
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo("Done")


@image_app.command("list")
def image_list(ctx: typer.Context) -> None:
    """Show the images present on the device."""
    try:
        rsp = _build_service(ctx).image_state(conn=_conn(ctx))
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    _print_image_state(rsp)


@image_app.command("test")
def image_test(ctx: typer.Context, hash: str) -> None:
    """Mark the image with HASH to be tested on next boot."""
    image_hash = _parse_hash(hash)
    try:
        rsp = _build_service(ctx).image_state_write(hash=image_hash, confirm=False, conn=_conn(ctx))
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    _print_image_state(rsp)


@image_app.command("confirm")
def image_confirm(ctx: typer.Context, hash: str | None = typer.Argument(None)) -> None:
    """Permanently switch to the image with HASH, or keep the running image if omitted."""
    image_hash = _parse_hash(hash) if hash else None
    try:
        rsp = _build_service(ctx).image_state_write(hash=image_hash, confirm=True, conn=_conn(ctx))
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    _print_image_state(rsp)


@image_app.command("corelist")
def image_corelist(ctx: typer.Context) -> None:
    """Report whether the device holds a core dump."""
    try:
        present = _build_service(ctx).core_list(conn=_conn(ctx))
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo("Corefile present" if present else "No corefiles")


@image_app.command("coreload")
def image_coreload(ctx: typer.Context, dst_file: Path) -> None:
    """Download the core dump to DST_FILE."""
    try:
        out = dst_file.open("wb")
    except OSError as exc:
        typer.echo(f"Error: Cannot open file {dst_file} - {exc}", err=True)
        raise typer.Exit(code=1) from None

    def _progress(rsp: CoreLoadRsp) -> None:
        typer.echo(f"{rsp.off}")
        out.seek(rsp.off)
        out.write(rsp.data)

    try:
        with out:
            _build_service(ctx).core_load(conn=_conn(ctx), progress_cb=_progress)
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except OSError as exc:
        typer.echo(f"Error: Cannot write {dst_file}: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo("Done")


@image_app.command("coreerase")
def image_coreerase(ctx: typer.Context) -> None:
    """Erase the core dump on the device."""
    try:
        _build_service(ctx).core_erase(conn=_conn(ctx))
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo("Done")


@app.command("taskstat")
def taskstat(ctx: typer.Context) -> None:
    """Show per-task statistics."""
    try:
        rsp = _build_service(ctx).task_stat(conn=_conn(ctx))
    except NmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    columns = ("prio", "tid", "state", "stkuse", "stksiz", "cswcnt", "runtime", "last_checkin", "next_checkin")
    typer.echo(f"{'task':>12} " + " ".join(f"{c:>12}" for c in columns))
    for name, stats in sorted(rsp.tasks.items()):
        typer.echo(f"{name:>12} " + " ".join(f"{stats.get(c, ''):>12}" for c in columns))


def run() -> None:
    app()


if __name__ == "__main__":
    run()
