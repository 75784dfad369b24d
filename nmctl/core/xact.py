"""Management transactions.

A transaction performs one logical operation against an open session and
records every response it receives in a `Result`. Transactions never retry:
transport errors propagate to the caller, and a nonzero device return code
simply ends the run with that response recorded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from nmctl.core.errors import ResponseMismatchError
from nmctl.core.model import Result, TxOptions
from nmctl.core.nmp import (
    CoreEraseReq,
    CoreEraseRsp,
    CoreListReq,
    CoreListRsp,
    CoreLoadReq,
    CoreLoadRsp,
    FsDownloadReq,
    FsDownloadRsp,
    FsUploadReq,
    FsUploadRsp,
    ImageEraseReq,
    ImageEraseRsp,
    ImageStateReadReq,
    ImageStateRsp,
    ImageStateWriteReq,
    ImageUploadReq,
    ImageUploadRsp,
    Request,
    Response,
    TaskStatReq,
    TaskStatRsp,
)
from nmctl.core.sizing import ChunkRequestBuilder, next_chunk
from nmctl.transports.base import Session

LOGGER = logging.getLogger(__name__)

R = TypeVar("R")


class _Acked(Protocol):
    @property
    def rc(self) -> int: ...

    @property
    def off(self) -> int: ...


class _Chunked(_Acked, Protocol):
    @property
    def data(self) -> bytes: ...


AckT = TypeVar("AckT", bound=_Acked)
ChunkT = TypeVar("ChunkT", bound=_Chunked)

ImageUploadProgressFn = Callable[[ImageUploadRsp], None]
FsUploadProgressFn = Callable[[FsUploadRsp], None]
FsDownloadProgressFn = Callable[[FsDownloadRsp], None]
CoreLoadProgressFn = Callable[[CoreLoadRsp], None]


def tx_req(session: Session, req: Request, opts: TxOptions, rsp_type: type[R]) -> R:
    """Send `req` and return its response, checked against `rsp_type`."""
    rsp: Response = session.tx_req(req, opts)
    if not isinstance(rsp, rsp_type):
        raise ResponseMismatchError(
            f"Expected {rsp_type.__name__} for {type(req).__name__}, got {type(rsp).__name__}"
        )
    return rsp


def _run_upload(
    session: Session,
    opts: TxOptions,
    data: bytes,
    start_off: int,
    build_req: ChunkRequestBuilder,
    rsp_type: type[AckT],
    progress_cb: Callable[[AckT], None] | None,
) -> Result[AckT]:
    res: Result[AckT] = Result()
    off = start_off

    while off < len(data):
        chunk = next_chunk(session, len(data), data[off:], off, build_req=build_req)
        req = build_req(off, chunk, len(data) if off == 0 else None)
        rsp = tx_req(session, req, opts, rsp_type)
        LOGGER.debug(
            "%s off=%d len=%d -> rc=%d off=%d",
            type(req).__name__,
            off,
            len(chunk),
            rsp.rc,
            rsp.off,
        )

        if progress_cb is not None:
            progress_cb(rsp)
        res.rsps.append(rsp)

        # The device reports how much it actually accepted.
        off = rsp.off
        if rsp.rc != 0:
            break

    return res


def _run_download(
    session: Session,
    opts: TxOptions,
    build_req: Callable[[int], Request],
    rsp_type: type[ChunkT],
    progress_cb: Callable[[ChunkT], None] | None,
) -> Result[ChunkT]:
    res: Result[ChunkT] = Result()
    off = 0

    while True:
        req = build_req(off)
        rsp = tx_req(session, req, opts, rsp_type)

        if progress_cb is not None:
            progress_cb(rsp)
        res.rsps.append(rsp)

        if rsp.rc != 0:
            break
        if not rsp.data:
            # End of object.
            break

        off = rsp.off + len(rsp.data)

    return res


@dataclass
class ImageUploadXact:
    data: bytes
    start_off: int = 0
    progress_cb: ImageUploadProgressFn | None = None
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[ImageUploadRsp]:
        return _run_upload(
            session,
            self.tx_options,
            self.data,
            self.start_off,
            lambda off, chunk, total: ImageUploadReq(off=off, data=chunk, len=total),
            ImageUploadRsp,
            self.progress_cb,
        )


@dataclass
class FsUploadXact:
    name: str
    data: bytes
    start_off: int = 0
    progress_cb: FsUploadProgressFn | None = None
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[FsUploadRsp]:
        return _run_upload(
            session,
            self.tx_options,
            self.data,
            self.start_off,
            lambda off, chunk, total: FsUploadReq(name=self.name, off=off, data=chunk, len=total),
            FsUploadRsp,
            self.progress_cb,
        )


@dataclass
class FsDownloadXact:
    name: str
    progress_cb: FsDownloadProgressFn | None = None
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[FsDownloadRsp]:
        return _run_download(
            session,
            self.tx_options,
            lambda off: FsDownloadReq(name=self.name, off=off),
            FsDownloadRsp,
            self.progress_cb,
        )


@dataclass
class CoreLoadXact:
    progress_cb: CoreLoadProgressFn | None = None
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[CoreLoadRsp]:
        return _run_download(
            session,
            self.tx_options,
            lambda off: CoreLoadReq(off=off),
            CoreLoadRsp,
            self.progress_cb,
        )


def _run_single(session: Session, opts: TxOptions, req: Request, rsp_type: type[R]) -> Result[R]:
    rsp = tx_req(session, req, opts, rsp_type)
    return Result(rsps=[rsp])


@dataclass
class ImageEraseXact:
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[ImageEraseRsp]:
        return _run_single(session, self.tx_options, ImageEraseReq(), ImageEraseRsp)


@dataclass
class CoreEraseXact:
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[CoreEraseRsp]:
        return _run_single(session, self.tx_options, CoreEraseReq(), CoreEraseRsp)


@dataclass
class CoreListXact:
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[CoreListRsp]:
        return _run_single(session, self.tx_options, CoreListReq(), CoreListRsp)


@dataclass
class ImageStateReadXact:
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[ImageStateRsp]:
        return _run_single(session, self.tx_options, ImageStateReadReq(), ImageStateRsp)


@dataclass
class ImageStateWriteXact:
    hash: bytes | None = None
    confirm: bool = False
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[ImageStateRsp]:
        req = ImageStateWriteReq(hash=self.hash, confirm=self.confirm)
        return _run_single(session, self.tx_options, req, ImageStateRsp)


@dataclass
class TaskStatXact:
    tx_options: TxOptions = field(default_factory=TxOptions)

    def run(self, session: Session) -> Result[TaskStatRsp]:
        return _run_single(session, self.tx_options, TaskStatReq(), TaskStatRsp)
