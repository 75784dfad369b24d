"""Session interfaces."""

from __future__ import annotations

import logging
import time
from typing import Protocol

from nmctl.core.codec import decode_header, decode_response, encode_request
from nmctl.core.errors import EncodingError, TransportSendError, TransportTimeoutError
from nmctl.core.model import TxOptions
from nmctl.core.nmp import MgmtProto, Request, Response

LOGGER = logging.getLogger(__name__)


class Session(Protocol):
    @property
    def mtu_out(self) -> int:
        """Outbound frame budget in bytes."""

    @property
    def mgmt_proto(self) -> MgmtProto:
        """Wire encoding variant used on this session."""

    def is_open(self) -> bool: ...

    def open(self) -> None: ...

    def close(self) -> None: ...

    def tx_req(self, req: Request, opts: TxOptions) -> Response:
        """Send `req` and block until its response arrives."""


class PacketSession:
    """Request/response plumbing shared by packet oriented sessions.

    Subclasses provide `_send_packet` and `_recv_packet`; this class assigns
    sequence numbers, drops stale responses and retries on timeout.
    """

    def __init__(self, *, mgmt_proto: MgmtProto = MgmtProto.NMP, mtu: int) -> None:
        self._mgmt_proto = mgmt_proto
        self._mtu = mtu
        self._seq = 0

    @property
    def mtu_out(self) -> int:
        return self._mtu

    @property
    def mgmt_proto(self) -> MgmtProto:
        return self._mgmt_proto

    def is_open(self) -> bool:
        raise NotImplementedError

    def open(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def _send_packet(self, data: bytes) -> None:
        raise NotImplementedError

    def _recv_packet(self, timeout_s: float) -> bytes:
        raise NotImplementedError

    def _reset_rx(self) -> None:
        """Drop partially received data before a request is resent."""

    def _next_seq(self) -> int:
        seq = self._seq
        self._seq = (self._seq + 1) & 0xFF
        return seq

    def tx_req(self, req: Request, opts: TxOptions) -> Response:
        if not self.is_open():
            raise TransportSendError("Session is not open")

        seq = self._next_seq()
        packet = encode_request(self._mgmt_proto, req, seq=seq)
        tries = max(opts.tries, 1)

        for attempt in range(1, tries + 1):
            self._send_packet(packet)
            try:
                raw = self._await_seq(seq, opts.timeout_s)
            except TransportTimeoutError:
                if attempt == tries:
                    raise
                LOGGER.debug(
                    "No response to %s seq=%d (attempt %d/%d); resending",
                    type(req).__name__,
                    seq,
                    attempt,
                    tries,
                )
                self._reset_rx()
                continue
            return decode_response(self._mgmt_proto, raw, req, seq=seq)

        raise TransportTimeoutError(f"No response to {type(req).__name__}")

    def _await_seq(self, seq: int, timeout_s: float) -> bytes:
        deadline = time.monotonic() + timeout_s
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransportTimeoutError(f"Timed out after {timeout_s}s waiting for seq={seq}")
            raw = self._recv_packet(remaining)
            try:
                hdr = decode_header(raw)
            except EncodingError:
                LOGGER.debug("Dropping runt packet (%d bytes)", len(raw))
                continue
            if hdr.seq != seq:
                LOGGER.debug("Dropping stale response seq=%d, waiting for seq=%d", hdr.seq, seq)
                continue
            return raw
