"""Fit chunks of a payload into a single transport frame."""

from __future__ import annotations

from collections.abc import Callable

from nmctl.core.codec import encode_request
from nmctl.core.errors import InsufficientMtuError
from nmctl.core.nmp import MgmtProto, Request
from nmctl.transports.base import Session

# build_req(off, chunk, total_len) -> request carrying `chunk` at `off`
ChunkRequestBuilder = Callable[[int, bytes, int | None], Request]
Encoder = Callable[[MgmtProto, Request], bytes]


def next_chunk(
    session: Session,
    data_len: int,
    remaining: bytes,
    off: int,
    *,
    build_req: ChunkRequestBuilder,
    encode: Encoder | None = None,
) -> bytes:
    """Return the largest prefix of `remaining` that fits in one frame at `off`.

    The total length field is only carried by the first request of a
    transfer, so the framing overhead is measured with an empty probe built
    at the same offset.

    The correction for oversized frames is applied once. Encodings with
    variable width length fields (CBOR byte strings) can therefore yield a
    chunk a byte shorter than the true maximum; devices in the field expect
    exactly these chunk boundaries.
    """
    encode = encode or encode_request
    total_len = data_len if off == 0 else None
    mtu = session.mtu_out
    proto = session.mgmt_proto

    probe = encode(proto, build_req(off, b"", total_len))
    room = mtu - len(probe)
    if room <= 0:
        raise InsufficientMtuError(
            f"Cannot create request at offset {off}; MTU too low to fit any data; "
            f"max-payload-size={mtu}"
        )

    size = min(room, len(remaining))
    framed = encode(proto, build_req(off, remaining[:size], total_len))
    oversize = len(framed) - mtu
    if oversize > 0:
        size -= oversize
        if size <= 0 and remaining:
            raise InsufficientMtuError(
                f"Cannot fit any data at offset {off} after framing; max-payload-size={mtu}"
            )

    return remaining[:size]
