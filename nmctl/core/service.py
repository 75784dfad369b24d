"""Profile-driven command layer: open a session, run one transaction, close."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import TypeVar

from nmctl.core.errors import DeviceError, ProfileSelectionError, ProfileValidationError
from nmctl.core.model import ConnProfile, ImageUpgradeResult, Result, TxOptions
from nmctl.core.nmp import (
    NMP_ERR_ENOENT,
    NMP_ERR_EUNKNOWN,
    CoreLoadRsp,
    FsDownloadRsp,
    FsUploadRsp,
    ImageStateRsp,
    ImageUploadRsp,
    TaskStatRsp,
    rc_name,
)
from nmctl.core.profile_loader import delete_profile, load_profiles, save_profile
from nmctl.core.upgrade import ImageUpgradeXact
from nmctl.core.xact import (
    CoreEraseXact,
    CoreListXact,
    CoreLoadXact,
    FsDownloadXact,
    FsUploadXact,
    ImageEraseXact,
    ImageStateReadXact,
    ImageStateWriteXact,
    TaskStatXact,
)
from nmctl.transports.base import Session
from nmctl.transports.ble_gatt import BLEGATTSession
from nmctl.transports.udp import DEFAULT_MTU, DEFAULT_PORT, UDPSession

LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[[ConnProfile], Session]
R = TypeVar("R")


def build_session(profile: ConnProfile) -> Session:
    if profile.type == "udp":
        return UDPSession(
            profile.address,
            profile.port or DEFAULT_PORT,
            mtu=profile.mtu or DEFAULT_MTU,
            mgmt_proto=profile.mgmt_proto,
        )
    if profile.type == "ble":
        return BLEGATTSession(
            profile.address,
            mtu=profile.mtu,
            mgmt_proto=profile.mgmt_proto,
            connect_timeout_s=profile.timeout_s,
        )
    raise ProfileValidationError(
        f"Unsupported connection type '{profile.type}' for profile '{profile.name}'."
    )


def _checked(res: Result[R], what: str) -> R:
    rsp = res.rsp
    if rsp is None:
        raise DeviceError(NMP_ERR_EUNKNOWN, f"{what}: no response from device")
    rc = res.status()
    if rc != 0:
        raise DeviceError(rc, f"{what} failed: {rc_name(rc)} ({rc})")
    return rsp


class MgmtService:
    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        timeout_s: float | None = None,
        tries: int | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self._session_factory = session_factory or build_session
        self._timeout_s = timeout_s
        self._tries = tries

    def list_profiles(self) -> list[ConnProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name)

    def add_profile(self, profile: ConnProfile) -> Path:
        path = save_profile(profile)
        self.profiles[profile.name] = profile
        return path

    def remove_profile(self, name: str) -> None:
        if not delete_profile(name):
            raise ProfileSelectionError(f"Unknown connection profile '{name}'.")
        self.profiles.pop(name, None)

    def resolve_profile(self, conn: str | None) -> ConnProfile:
        if conn:
            profile = self.profiles.get(conn)
            if profile is None:
                raise ProfileSelectionError(
                    f"Unknown connection profile '{conn}'. Use 'nmctl conn list' to inspect available profiles."
                )
            return profile

        if not self.profiles:
            raise ProfileSelectionError(
                "No connection profiles defined. Use 'nmctl conn add' to create one."
            )
        if len(self.profiles) > 1:
            names = ", ".join(sorted(self.profiles))
            raise ProfileSelectionError(
                f"Multiple connection profiles found: {names}. Use --conn to choose one."
            )
        return next(iter(self.profiles.values()))

    def tx_options(self, profile: ConnProfile) -> TxOptions:
        opts = profile.tx_options
        if self._timeout_s is not None:
            opts = replace(opts, timeout_s=self._timeout_s)
        if self._tries is not None:
            opts = replace(opts, tries=self._tries)
        return opts

    @contextmanager
    def session(self, conn: str | None = None) -> Iterator[tuple[Session, TxOptions]]:
        profile = self.resolve_profile(conn)
        session = self._session_factory(profile)
        LOGGER.debug("Opening %s session '%s' to %s", profile.type, profile.name, profile.address)
        session.open()
        try:
            yield session, self.tx_options(profile)
        finally:
            session.close()

    def fs_upload(
        self,
        data: bytes,
        dst_name: str,
        *,
        conn: str | None = None,
        progress_cb: Callable[[FsUploadRsp], None] | None = None,
    ) -> Result[FsUploadRsp]:
        with self.session(conn) as (session, opts):
            xact = FsUploadXact(name=dst_name, data=data, progress_cb=progress_cb, tx_options=opts)
            return xact.run(session)

    def fs_download(
        self,
        src_name: str,
        *,
        conn: str | None = None,
        progress_cb: Callable[[FsDownloadRsp], None] | None = None,
    ) -> Result[FsDownloadRsp]:
        with self.session(conn) as (session, opts):
            xact = FsDownloadXact(name=src_name, progress_cb=progress_cb, tx_options=opts)
            return xact.run(session)

    def image_upgrade(
        self,
        data: bytes,
        *,
        conn: str | None = None,
        no_erase: bool = False,
        progress_cb: Callable[[ImageUploadRsp], None] | None = None,
    ) -> ImageUpgradeResult:
        with self.session(conn) as (session, opts):
            xact = ImageUpgradeXact(
                data=data,
                no_erase=no_erase,
                progress_cb=progress_cb,
                tx_options=opts,
            )
            res = xact.run(session)
        rc = res.status()
        if rc != 0:
            raise DeviceError(rc, f"Image upload failed: {rc_name(rc)} ({rc})")
        return res

    def image_erase(self, *, conn: str | None = None) -> None:
        with self.session(conn) as (session, opts):
            res = ImageEraseXact(tx_options=opts).run(session)
        _checked(res, "Image erase")

    def image_state(self, *, conn: str | None = None) -> ImageStateRsp:
        with self.session(conn) as (session, opts):
            res = ImageStateReadXact(tx_options=opts).run(session)
        return _checked(res, "Image state read")

    def image_state_write(
        self,
        *,
        hash: bytes | None = None,
        confirm: bool = False,
        conn: str | None = None,
    ) -> ImageStateRsp:
        with self.session(conn) as (session, opts):
            res = ImageStateWriteXact(hash=hash, confirm=confirm, tx_options=opts).run(session)
        return _checked(res, "Image state write")

    def core_list(self, *, conn: str | None = None) -> bool:
        with self.session(conn) as (session, opts):
            res = CoreListXact(tx_options=opts).run(session)
        if res.status() == NMP_ERR_ENOENT:
            return False
        _checked(res, "Core list")
        return True

    def core_load(
        self,
        *,
        conn: str | None = None,
        progress_cb: Callable[[CoreLoadRsp], None] | None = None,
    ) -> Result[CoreLoadRsp]:
        with self.session(conn) as (session, opts):
            res = CoreLoadXact(progress_cb=progress_cb, tx_options=opts).run(session)
        _checked(res, "Core load")
        return res

    def core_erase(self, *, conn: str | None = None) -> None:
        with self.session(conn) as (session, opts):
            res = CoreEraseXact(tx_options=opts).run(session)
        _checked(res, "Core erase")

    def task_stat(self, *, conn: str | None = None) -> TaskStatRsp:
        with self.session(conn) as (session, opts):
            res = TaskStatXact(tx_options=opts).run(session)
        return _checked(res, "Task stat")
