"""Public entry points for scripting device management with nmctl.

Transactions and sessions can be used directly for fine-grained control;
`Client` wraps profile resolution and session lifetime for the common
commands.
"""

from __future__ import annotations

from collections.abc import Callable

from nmctl.core.errors import (
    DeviceError,
    EncodingError,
    InsufficientMtuError,
    NmctlError,
    ProfileLoadError,
    ProfileSelectionError,
    ProfileValidationError,
    ResponseMismatchError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from nmctl.core.model import ConnProfile, ImageUpgradeResult, Result, TxOptions
from nmctl.core.nmp import (
    CoreLoadRsp,
    FsDownloadRsp,
    FsUploadRsp,
    ImageStateEntry,
    ImageStateRsp,
    ImageUploadRsp,
    MgmtProto,
    TaskStatRsp,
)
from nmctl.core.service import MgmtService, SessionFactory
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
    ImageUploadXact,
    TaskStatXact,
)
from nmctl.transports.base import Session
from nmctl.transports.ble_gatt import BLEGATTSession
from nmctl.transports.udp import UDPSession

__all__ = [
    "NmctlError",
    "DeviceError",
    "EncodingError",
    "InsufficientMtuError",
    "ProfileLoadError",
    "ProfileSelectionError",
    "ProfileValidationError",
    "ResponseMismatchError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportTimeoutError",
    "ConnProfile",
    "ImageStateEntry",
    "ImageStateRsp",
    "ImageUpgradeResult",
    "MgmtProto",
    "Result",
    "TaskStatRsp",
    "TxOptions",
    "CoreEraseXact",
    "CoreListXact",
    "CoreLoadXact",
    "FsDownloadXact",
    "FsUploadXact",
    "ImageEraseXact",
    "ImageStateReadXact",
    "ImageStateWriteXact",
    "ImageUpgradeXact",
    "ImageUploadXact",
    "TaskStatXact",
    "Session",
    "BLEGATTSession",
    "UDPSession",
    "Client",
]


class Client:
    """Public client for interacting with nmctl core capabilities.

    A `Client` instance resolves a connection profile, opens a session for
    the duration of one command and closes it again. Pass `session_factory`
    to supply sessions that are not described by a profile type.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        timeout_s: float | None = None,
        tries: int | None = None,
    ) -> None:
        self._service = MgmtService(session_factory=session_factory, timeout_s=timeout_s, tries=tries)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_profiles(self) -> list[ConnProfile]:
        return self._service.list_profiles()

    def upgrade_image(
        self,
        data: bytes,
        *,
        conn: str | None = None,
        no_erase: bool = False,
        progress_cb: Callable[[ImageUploadRsp], None] | None = None,
    ) -> ImageUpgradeResult:
        return self._service.image_upgrade(data, conn=conn, no_erase=no_erase, progress_cb=progress_cb)

    def image_state(self, *, conn: str | None = None) -> ImageStateRsp:
        return self._service.image_state(conn=conn)

    def test_image(self, image_hash: bytes, *, conn: str | None = None) -> ImageStateRsp:
        return self._service.image_state_write(hash=image_hash, confirm=False, conn=conn)

    def confirm_image(self, image_hash: bytes | None = None, *, conn: str | None = None) -> ImageStateRsp:
        return self._service.image_state_write(hash=image_hash, confirm=True, conn=conn)

    def erase_image(self, *, conn: str | None = None) -> None:
        self._service.image_erase(conn=conn)

    def upload_file(
        self,
        data: bytes,
        dst_name: str,
        *,
        conn: str | None = None,
        progress_cb: Callable[[FsUploadRsp], None] | None = None,
    ) -> Result[FsUploadRsp]:
        return self._service.fs_upload(data, dst_name, conn=conn, progress_cb=progress_cb)

    def download_file(
        self,
        src_name: str,
        *,
        conn: str | None = None,
        progress_cb: Callable[[FsDownloadRsp], None] | None = None,
    ) -> bytes:
        chunks: dict[int, bytes] = {}

        def _collect(rsp: FsDownloadRsp) -> None:
            chunks[rsp.off] = rsp.data
            if progress_cb is not None:
                progress_cb(rsp)

        res = self._service.fs_download(src_name, conn=conn, progress_cb=_collect)
        if res.status() != 0:
            raise DeviceError(res.status(), f"Download of '{src_name}' failed with rc={res.status()}")
        return b"".join(chunks[off] for off in sorted(chunks))

    def has_core(self, *, conn: str | None = None) -> bool:
        return self._service.core_list(conn=conn)

    def load_core(
        self,
        *,
        conn: str | None = None,
        progress_cb: Callable[[CoreLoadRsp], None] | None = None,
    ) -> bytes:
        res = self._service.core_load(conn=conn, progress_cb=progress_cb)
        return b"".join(rsp.data for rsp in sorted(res.rsps, key=lambda r: r.off))

    def erase_core(self, *, conn: str | None = None) -> None:
        self._service.core_erase(conn=conn)

    def task_stats(self, *, conn: str | None = None) -> dict[str, dict[str, int]]:
        return self._service.task_stat(conn=conn).tasks
