"""NMP packet framing: 8-byte header followed by a CBOR body."""

from __future__ import annotations

import struct
from typing import Any

import cbor2

from nmctl.core.errors import EncodingError, ResponseMismatchError
from nmctl.core.nmp import NMP_HDR_SIZE, MgmtProto, NmpHeader, Request, Response

_HDR = struct.Struct(">BBHHBB")
_OP_MASK = 0x07
_VERSION_SHIFT = 3
_VERSION_MASK = 0x03


def _version_for(proto: MgmtProto) -> int:
    if proto is MgmtProto.NMP:
        return 0
    if proto is MgmtProto.SMP2:
        return 1
    raise EncodingError(f"Unsupported management protocol '{proto}'")


def encode_header(proto: MgmtProto, hdr: NmpHeader) -> bytes:
    op_byte = (hdr.op & _OP_MASK) | (_version_for(proto) << _VERSION_SHIFT)
    try:
        return _HDR.pack(op_byte, hdr.flags, hdr.len, hdr.group, hdr.seq & 0xFF, hdr.id)
    except struct.error as exc:
        raise EncodingError(f"Cannot encode NMP header: {exc}") from exc


def decode_header(data: bytes) -> NmpHeader:
    if len(data) < NMP_HDR_SIZE:
        raise EncodingError(
            f"Packet too short for NMP header: {len(data)} < {NMP_HDR_SIZE} bytes"
        )
    op_byte, flags, length, group, seq, msg_id = _HDR.unpack_from(data)
    return NmpHeader(
        op=op_byte & _OP_MASK,
        flags=flags,
        len=length,
        group=group,
        seq=seq,
        id=msg_id,
        version=(op_byte >> _VERSION_SHIFT) & _VERSION_MASK,
    )


def encode_request(proto: MgmtProto, req: Request, seq: int = 0) -> bytes:
    """Frame `req` for the wire using the `proto` variant."""
    try:
        body = cbor2.dumps(req.body())
    except (cbor2.CBOREncodeError, TypeError, ValueError) as exc:
        raise EncodingError(f"Cannot encode {type(req).__name__}: {exc}") from exc

    hdr = NmpHeader(op=req.op, flags=0, len=len(body), group=req.group, seq=seq, id=req.id)
    return encode_header(proto, hdr) + body


def decode_response(
    proto: MgmtProto,
    data: bytes,
    req: Request,
    seq: int | None = None,
) -> Response:
    """Parse `data` as the response to `req`.

    The header must echo the request's group and id with the matching
    response op; when `seq` is given it must match too.
    """
    hdr = decode_header(data)
    if hdr.version != _version_for(proto):
        raise ResponseMismatchError(
            f"Response protocol version {hdr.version} does not match session protocol '{proto.value}'"
        )
    if hdr.op != req.op + 1 or hdr.group != req.group or hdr.id != req.id:
        raise ResponseMismatchError(
            f"Unexpected response op={hdr.op} group={hdr.group} id={hdr.id} "
            f"for {type(req).__name__}"
        )
    if seq is not None and hdr.seq != seq & 0xFF:
        raise ResponseMismatchError(f"Unexpected response seq={hdr.seq}, expected {seq & 0xFF}")

    body_bytes = data[NMP_HDR_SIZE:]
    if len(body_bytes) != hdr.len:
        raise EncodingError(
            f"Response body length {len(body_bytes)} does not match header length {hdr.len}"
        )

    body: Any = {}
    if body_bytes:
        try:
            body = cbor2.loads(body_bytes)
        except (cbor2.CBORDecodeError, ValueError) as exc:
            raise EncodingError(f"Invalid CBOR in response: {exc}") from exc
    if not isinstance(body, dict):
        raise EncodingError("Response body must be a CBOR map")

    try:
        return req.rsp_type.from_body(body)
    except (TypeError, ValueError, AttributeError) as exc:
        raise EncodingError(f"Malformed {req.rsp_type.__name__}: {exc}") from exc

