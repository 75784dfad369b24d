"""Core data models used across transactions, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from nmctl.core.nmp import NMP_ERR_EUNKNOWN, ImageEraseRsp, ImageUploadRsp, MgmtProto

RspT = TypeVar("RspT")


@dataclass(frozen=True)
class TxOptions:
    """Transmit configuration handed to the session for each request."""

    timeout_s: float = 10.0
    tries: int = 1


@dataclass(frozen=True)
class ConnProfile:
    name: str
    type: str
    address: str
    port: int | None = None
    mtu: int | None = None
    mgmt_proto: MgmtProto = MgmtProto.NMP
    timeout_s: float = 10.0
    tries: int = 1

    @property
    def tx_options(self) -> TxOptions:
        return TxOptions(timeout_s=self.timeout_s, tries=self.tries)


@dataclass
class Result(Generic[RspT]):
    """Responses recorded during one transaction run, in arrival order."""

    rsps: list[RspT] = field(default_factory=list)

    def status(self) -> int:
        if self.rsps:
            return self.rsps[-1].rc  # type: ignore[attr-defined]
        return NMP_ERR_EUNKNOWN

    @property
    def rsp(self) -> RspT | None:
        return self.rsps[-1] if self.rsps else None


@dataclass
class ImageUpgradeResult:
    erase_res: Result[ImageEraseRsp] | None
    upload_res: Result[ImageUploadRsp] | None

    def status(self) -> int:
        if self.upload_res is not None:
            return self.upload_res.status()
        if self.erase_res is not None:
            return self.erase_res.status()
        return NMP_ERR_EUNKNOWN
