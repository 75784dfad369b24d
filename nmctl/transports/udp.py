"""UDP session implementation using Python sockets."""

from __future__ import annotations

import socket

from nmctl.core.errors import TransportConnectError, TransportSendError, TransportTimeoutError
from nmctl.core.nmp import MgmtProto
from nmctl.transports.base import PacketSession

DEFAULT_PORT = 1337
DEFAULT_MTU = 1024
_RECV_BUFSIZE = 65535


class UDPSession(PacketSession):
    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        mtu: int = DEFAULT_MTU,
        mgmt_proto: MgmtProto = MgmtProto.NMP,
    ) -> None:
        super().__init__(mgmt_proto=mgmt_proto, mtu=mtu)
        self.host = host
        self.port = port
        self._sock: socket.socket | None = None

    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        if self._sock is not None:
            return
        try:
            infos = socket.getaddrinfo(self.host, self.port, type=socket.SOCK_DGRAM)
        except OSError as exc:
            raise TransportConnectError(f"Cannot resolve {self.host}:{self.port}: {exc}") from exc

        family, socktype, proto, _, sockaddr = infos[0]
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as exc:
            raise TransportConnectError(f"Could not create UDP socket: {exc}") from exc
        try:
            sock.connect(sockaddr)
        except OSError as exc:
            sock.close()
            raise TransportConnectError(
                f"UDP connect failed for {self.host}:{self.port}: {exc}"
            ) from exc
        self._sock = sock

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.close()
        finally:
            self._sock = None

    def _send_packet(self, data: bytes) -> None:
        if self._sock is None:
            raise TransportSendError("UDP session is closed")
        try:
            self._sock.send(data)
        except OSError as exc:
            raise TransportSendError(f"UDP send failed: {exc}") from exc

    def _recv_packet(self, timeout_s: float) -> bytes:
        if self._sock is None:
            raise TransportSendError("UDP session is closed")
        self._sock.settimeout(timeout_s)
        try:
            return self._sock.recv(_RECV_BUFSIZE)
        except TimeoutError as exc:
            raise TransportTimeoutError(
                f"UDP receive timed out for {self.host}:{self.port}"
            ) from exc
        except OSError as exc:
            raise TransportSendError(f"UDP receive failed: {exc}") from exc
