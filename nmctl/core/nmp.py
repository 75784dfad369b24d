"""Management protocol message definitions.

Requests and responses are plain frozen dataclasses. Each request type is
bound to exactly one response type, so decoding never needs to guess what a
packet contains; the union of all responses is exported as `Response`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

NMP_HDR_SIZE = 8

NMP_OP_READ = 0
NMP_OP_READ_RSP = 1
NMP_OP_WRITE = 2
NMP_OP_WRITE_RSP = 3

NMP_GROUP_DEFAULT = 0
NMP_GROUP_IMAGE = 1
NMP_GROUP_STAT = 2
NMP_GROUP_CONFIG = 3
NMP_GROUP_LOG = 4
NMP_GROUP_CRASH = 5
NMP_GROUP_SPLIT = 6
NMP_GROUP_RUN = 7
NMP_GROUP_FS = 8

NMP_ID_DEF_TASKSTAT = 2

NMP_ID_IMAGE_STATE = 0
NMP_ID_IMAGE_UPLOAD = 1
NMP_ID_IMAGE_CORELIST = 3
NMP_ID_IMAGE_CORELOAD = 4
NMP_ID_IMAGE_ERASE = 5

NMP_ID_FS_FILE = 0

NMP_ERR_OK = 0
NMP_ERR_EUNKNOWN = 1
NMP_ERR_ENOMEM = 2
NMP_ERR_EINVAL = 3
NMP_ERR_ETIMEOUT = 4
NMP_ERR_ENOENT = 5
NMP_ERR_EBADSTATE = 6
NMP_ERR_EMSGSIZE = 7
NMP_ERR_ENOTSUP = 8

_ERR_NAMES = {
    NMP_ERR_OK: "ok",
    NMP_ERR_EUNKNOWN: "unknown error",
    NMP_ERR_ENOMEM: "out of memory",
    NMP_ERR_EINVAL: "invalid argument",
    NMP_ERR_ETIMEOUT: "timeout",
    NMP_ERR_ENOENT: "no such entry",
    NMP_ERR_EBADSTATE: "bad state",
    NMP_ERR_EMSGSIZE: "message too large",
    NMP_ERR_ENOTSUP: "not supported",
}


def rc_name(rc: int) -> str:
    return _ERR_NAMES.get(rc, f"rc={rc}")


class MgmtProto(str, enum.Enum):
    """Wire encoding variant spoken by a session."""

    NMP = "nmp"
    SMP2 = "smp2"


@dataclass(frozen=True)
class NmpHeader:
    op: int
    flags: int
    len: int
    group: int
    seq: int
    id: int
    version: int = 0


# Responses


def _rc(body: dict[str, Any]) -> int:
    return int(body.get("rc", NMP_ERR_OK))


def _opt_int(body: dict[str, Any], key: str) -> int | None:
    value = body.get(key)
    return int(value) if value is not None else None


@dataclass(frozen=True)
class ImageUploadRsp:
    rc: int
    off: int = 0

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> ImageUploadRsp:
        return cls(rc=_rc(body), off=int(body.get("off", 0)))


@dataclass(frozen=True)
class ImageStateEntry:
    slot: int
    version: str
    hash: bytes
    bootable: bool = False
    pending: bool = False
    confirmed: bool = False
    active: bool = False
    permanent: bool = False

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> ImageStateEntry:
        return cls(
            slot=int(body.get("slot", 0)),
            version=str(body.get("version", "")),
            hash=bytes(body.get("hash", b"")),
            bootable=bool(body.get("bootable", False)),
            pending=bool(body.get("pending", False)),
            confirmed=bool(body.get("confirmed", False)),
            active=bool(body.get("active", False)),
            permanent=bool(body.get("permanent", False)),
        )


@dataclass(frozen=True)
class ImageStateRsp:
    rc: int
    images: tuple[ImageStateEntry, ...] = ()
    split_status: int = 0

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> ImageStateRsp:
        return cls(
            rc=_rc(body),
            images=tuple(ImageStateEntry.from_body(i) for i in body.get("images", [])),
            split_status=int(body.get("splitStatus", 0)),
        )


@dataclass(frozen=True)
class ImageEraseRsp:
    rc: int

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> ImageEraseRsp:
        return cls(rc=_rc(body))


@dataclass(frozen=True)
class CoreListRsp:
    rc: int

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CoreListRsp:
        return cls(rc=_rc(body))


@dataclass(frozen=True)
class CoreLoadRsp:
    rc: int
    off: int = 0
    data: bytes = b""
    len: int | None = None

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CoreLoadRsp:
        return cls(
            rc=_rc(body),
            off=int(body.get("off", 0)),
            data=bytes(body.get("data", b"")),
            len=_opt_int(body, "len"),
        )


@dataclass(frozen=True)
class CoreEraseRsp:
    rc: int

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CoreEraseRsp:
        return cls(rc=_rc(body))


@dataclass(frozen=True)
class FsUploadRsp:
    rc: int
    off: int = 0

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> FsUploadRsp:
        return cls(rc=_rc(body), off=int(body.get("off", 0)))


@dataclass(frozen=True)
class FsDownloadRsp:
    rc: int
    off: int = 0
    data: bytes = b""
    len: int | None = None

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> FsDownloadRsp:
        return cls(
            rc=_rc(body),
            off=int(body.get("off", 0)),
            data=bytes(body.get("data", b"")),
            len=_opt_int(body, "len"),
        )


@dataclass(frozen=True)
class TaskStatRsp:
    rc: int
    tasks: dict[str, dict[str, int]] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> TaskStatRsp:
        tasks = {
            str(name): {str(k): int(v) for k, v in stats.items()}
            for name, stats in body.get("tasks", {}).items()
        }
        return cls(rc=_rc(body), tasks=tasks)


Response = Union[
    ImageUploadRsp,
    ImageStateRsp,
    ImageEraseRsp,
    CoreListRsp,
    CoreLoadRsp,
    CoreEraseRsp,
    FsUploadRsp,
    FsDownloadRsp,
    TaskStatRsp,
]


# Requests


@dataclass(frozen=True)
class ImageUploadReq:
    op: ClassVar[int] = NMP_OP_WRITE
    group: ClassVar[int] = NMP_GROUP_IMAGE
    id: ClassVar[int] = NMP_ID_IMAGE_UPLOAD
    rsp_type: ClassVar[type] = ImageUploadRsp

    off: int
    data: bytes
    len: int | None = None

    def body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"off": self.off, "data": self.data}
        if self.len is not None:
            body["len"] = self.len
        return body


@dataclass(frozen=True)
class FsUploadReq:
    op: ClassVar[int] = NMP_OP_WRITE
    group: ClassVar[int] = NMP_GROUP_FS
    id: ClassVar[int] = NMP_ID_FS_FILE
    rsp_type: ClassVar[type] = FsUploadRsp

    name: str
    off: int
    data: bytes
    len: int | None = None

    def body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"name": self.name, "off": self.off, "data": self.data}
        if self.len is not None:
            body["len"] = self.len
        return body


@dataclass(frozen=True)
class FsDownloadReq:
    op: ClassVar[int] = NMP_OP_READ
    group: ClassVar[int] = NMP_GROUP_FS
    id: ClassVar[int] = NMP_ID_FS_FILE
    rsp_type: ClassVar[type] = FsDownloadRsp

    name: str
    off: int = 0

    def body(self) -> dict[str, Any]:
        return {"name": self.name, "off": self.off}


@dataclass(frozen=True)
class CoreLoadReq:
    op: ClassVar[int] = NMP_OP_READ
    group: ClassVar[int] = NMP_GROUP_IMAGE
    id: ClassVar[int] = NMP_ID_IMAGE_CORELOAD
    rsp_type: ClassVar[type] = CoreLoadRsp

    off: int = 0

    def body(self) -> dict[str, Any]:
        return {"off": self.off}


@dataclass(frozen=True)
class CoreEraseReq:
    op: ClassVar[int] = NMP_OP_WRITE
    group: ClassVar[int] = NMP_GROUP_IMAGE
    id: ClassVar[int] = NMP_ID_IMAGE_CORELOAD
    rsp_type: ClassVar[type] = CoreEraseRsp

    def body(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class CoreListReq:
    op: ClassVar[int] = NMP_OP_READ
    group: ClassVar[int] = NMP_GROUP_IMAGE
    id: ClassVar[int] = NMP_ID_IMAGE_CORELIST
    rsp_type: ClassVar[type] = CoreListRsp

    def body(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class ImageEraseReq:
    op: ClassVar[int] = NMP_OP_WRITE
    group: ClassVar[int] = NMP_GROUP_IMAGE
    id: ClassVar[int] = NMP_ID_IMAGE_ERASE
    rsp_type: ClassVar[type] = ImageEraseRsp

    def body(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class ImageStateReadReq:
    op: ClassVar[int] = NMP_OP_READ
    group: ClassVar[int] = NMP_GROUP_IMAGE
    id: ClassVar[int] = NMP_ID_IMAGE_STATE
    rsp_type: ClassVar[type] = ImageStateRsp

    def body(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class ImageStateWriteReq:
    op: ClassVar[int] = NMP_OP_WRITE
    group: ClassVar[int] = NMP_GROUP_IMAGE
    id: ClassVar[int] = NMP_ID_IMAGE_STATE
    rsp_type: ClassVar[type] = ImageStateRsp

    hash: bytes | None = None
    confirm: bool = False

    def body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"confirm": self.confirm}
        if self.hash is not None:
            body["hash"] = self.hash
        return body


@dataclass(frozen=True)
class TaskStatReq:
    op: ClassVar[int] = NMP_OP_READ
    group: ClassVar[int] = NMP_GROUP_DEFAULT
    id: ClassVar[int] = NMP_ID_DEF_TASKSTAT
    rsp_type: ClassVar[type] = TaskStatRsp

    def body(self) -> dict[str, Any]:
        return {}


Request = Union[
    ImageUploadReq,
    FsUploadReq,
    FsDownloadReq,
    CoreLoadReq,
    CoreEraseReq,
    CoreListReq,
    ImageEraseReq,
    ImageStateReadReq,
    ImageStateWriteReq,
    TaskStatReq,
]
