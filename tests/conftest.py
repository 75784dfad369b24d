from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from nmp_frames import encode_response

from nmctl.core.codec import decode_response, encode_request
from nmctl.core.errors import TransportConnectError, TransportSendError, TransportTimeoutError
from nmctl.core.model import ConnProfile, TxOptions
from nmctl.core.nmp import (
    NMP_ERR_ENOENT,
    CoreEraseReq,
    CoreListReq,
    CoreLoadReq,
    FsDownloadReq,
    FsUploadReq,
    ImageEraseReq,
    ImageStateReadReq,
    ImageStateWriteReq,
    ImageUploadReq,
    MgmtProto,
    Request,
    TaskStatReq,
)

SLOT1_HASH = bytes(range(32))


class SimDevice:
    """In-memory device that serves contiguous, non-overlapping chunks."""

    def __init__(
        self,
        *,
        files: dict[str, bytes] | None = None,
        core: bytes = b"",
        chunk_size: int = 64,
        accept_limit: int | None = None,
        upload_rc_at: tuple[int, int] | None = None,
        rc_override: dict[type, int] | None = None,
    ) -> None:
        self.image = bytearray()
        self.image_len: int | None = None
        self.files: dict[str, bytes] = dict(files or {})
        self.uploads: dict[str, bytearray] = {}
        self.core = core
        self.chunk_size = chunk_size
        self.accept_limit = accept_limit
        self.upload_rc_at = upload_rc_at
        self.rc_override = rc_override or {}
        self.erase_count = 0
        self.pending = False
        self.confirmed = True

    def _accept(self, buf: bytearray, off: int, data: bytes) -> dict[str, Any]:
        if off != len(buf):
            return {"rc": 0, "off": len(buf)}
        if self.upload_rc_at is not None and off >= self.upload_rc_at[0]:
            return {"rc": self.upload_rc_at[1]}
        if self.accept_limit is not None:
            data = data[: self.accept_limit]
        buf.extend(data)
        return {"rc": 0, "off": len(buf)}

    def _serve(self, blob: bytes, off: int) -> dict[str, Any]:
        body: dict[str, Any] = {"rc": 0, "off": off, "data": blob[off : off + self.chunk_size]}
        if off == 0:
            body["len"] = len(blob)
        return body

    def handle(self, req: Request) -> dict[str, Any]:
        if type(req) in self.rc_override:
            return {"rc": self.rc_override[type(req)]}

        if isinstance(req, ImageUploadReq):
            if req.off == 0:
                self.image = bytearray()
                self.image_len = req.len
            return self._accept(self.image, req.off, req.data)
        if isinstance(req, FsUploadReq):
            if req.off == 0:
                self.uploads[req.name] = bytearray()
            buf = self.uploads.setdefault(req.name, bytearray())
            body = self._accept(buf, req.off, req.data)
            self.files[req.name] = bytes(buf)
            return body
        if isinstance(req, FsDownloadReq):
            if req.name not in self.files:
                return {"rc": NMP_ERR_ENOENT}
            return self._serve(self.files[req.name], req.off)
        if isinstance(req, CoreLoadReq):
            if not self.core:
                return {"rc": NMP_ERR_ENOENT}
            return self._serve(self.core, req.off)
        if isinstance(req, CoreListReq):
            return {"rc": 0 if self.core else NMP_ERR_ENOENT}
        if isinstance(req, CoreEraseReq):
            self.core = b""
            return {"rc": 0}
        if isinstance(req, ImageEraseReq):
            self.erase_count += 1
            self.image = bytearray()
            return {"rc": 0}
        if isinstance(req, ImageStateWriteReq):
            self.pending = not req.confirm
            self.confirmed = req.confirm
            return self._state()
        if isinstance(req, ImageStateReadReq):
            return self._state()
        if isinstance(req, TaskStatReq):
            return {
                "rc": 0,
                "tasks": {
                    "idle": {"prio": 255, "tid": 0, "state": 1, "stkuse": 60, "stksiz": 64},
                    "main": {"prio": 127, "tid": 1, "state": 2, "stkuse": 200, "stksiz": 1024},
                },
            }
        raise AssertionError(f"Unexpected request {req!r}")

    def _state(self) -> dict[str, Any]:
        return {
            "images": [
                {
                    "slot": 0,
                    "version": "1.0.0",
                    "hash": bytes(32),
                    "bootable": True,
                    "active": True,
                    "confirmed": self.confirmed,
                },
                {
                    "slot": 1,
                    "version": "1.1.0",
                    "hash": SLOT1_HASH,
                    "bootable": True,
                    "pending": self.pending,
                },
            ],
            "splitStatus": 0,
        }


class SimSession:
    """Session wired to a `SimDevice` through the real codec.

    `fail_at` lists request indices at which the link drops. With
    `lose_response` the device processes the request before the drop.
    """

    def __init__(
        self,
        device: SimDevice,
        *,
        mtu: int = 128,
        mgmt_proto: MgmtProto = MgmtProto.NMP,
        fail_at: set[int] | None = None,
        lose_response: bool = False,
        close_on_failure: bool = True,
        reopen_fails: bool = False,
    ) -> None:
        self.device = device
        self._mtu = mtu
        self._proto = mgmt_proto
        self.fail_at = set(fail_at or ())
        self.lose_response = lose_response
        self.close_on_failure = close_on_failure
        self.reopen_fails = reopen_fails
        self.open_count = 0
        self.requests: list[Request] = []
        self.frame_sizes: list[int] = []
        self.errors: list[Exception] = []
        self.tx_opts: list[TxOptions] = []
        self._open = False
        self._seq = 0

    @property
    def mtu_out(self) -> int:
        return self._mtu

    @property
    def mgmt_proto(self) -> MgmtProto:
        return self._proto

    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.open_count > 0 and self.reopen_fails:
            raise TransportConnectError("peer unreachable")
        self.open_count += 1
        self._open = True

    def close(self) -> None:
        self._open = False

    def tx_req(self, req: Request, opts: TxOptions) -> Any:
        if not self._open:
            raise TransportSendError("Session is not open")

        index = len(self.requests)
        self.requests.append(req)
        self.tx_opts.append(opts)
        seq = self._seq
        self._seq = (self._seq + 1) & 0xFF
        frame = encode_request(self._proto, req, seq=seq)
        assert len(frame) <= self._mtu, f"{type(req).__name__} frame of {len(frame)} exceeds MTU {self._mtu}"
        self.frame_sizes.append(len(frame))

        if index in self.fail_at:
            if self.lose_response:
                self.device.handle(req)
            if self.close_on_failure:
                self._open = False
            err = TransportTimeoutError(f"link dropped at request {index}")
            self.errors.append(err)
            raise err

        raw = encode_response(self._proto, req, self.device.handle(req), seq=seq)
        return decode_response(self._proto, raw, req, seq=seq)


class SimSessionFactory:
    """Session factory for `MgmtService`; keeps every session it builds."""

    def __init__(self, device: SimDevice, **kwargs: Any) -> None:
        self.device = device
        self.kwargs = kwargs
        self.profiles: list[ConnProfile] = []
        self.created: list[SimSession] = []

    def __call__(self, profile: ConnProfile) -> SimSession:
        kwargs = {"mtu": profile.mtu or 128, **self.kwargs}
        session = SimSession(self.device, mgmt_proto=profile.mgmt_proto, **kwargs)
        self.profiles.append(profile)
        self.created.append(session)
        return session


@pytest.fixture
def device() -> SimDevice:
    return SimDevice()


@pytest.fixture
def make_device() -> Callable[..., SimDevice]:
    return SimDevice


@pytest.fixture
def make_session() -> Callable[..., SimSession]:
    def _make(device: SimDevice, **kwargs: Any) -> SimSession:
        session = SimSession(device, **kwargs)
        session.open()
        return session

    return _make


@pytest.fixture
def make_factory() -> Callable[..., SimSessionFactory]:
    return SimSessionFactory


@pytest.fixture
def profile_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    return tmp_path / "cfg" / "nmctl" / "profiles"


@pytest.fixture
def write_profile(profile_home: Path) -> Callable[[str, str], Path]:
    def _write(filename: str, content: str) -> Path:
        profile_home.mkdir(parents=True, exist_ok=True)
        path = profile_home / filename
        path.write_text(content, encoding="utf-8")
        return path

    return _write
