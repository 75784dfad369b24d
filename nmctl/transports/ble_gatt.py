"""BLE GATT session implementation."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Coroutine
from typing import Any, TypeVar

from nmctl.core.codec import decode_header
from nmctl.core.errors import (
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from nmctl.core.nmp import NMP_HDR_SIZE, MgmtProto
from nmctl.transports.base import PacketSession

SMP_SERVICE_UUID = "8d53dc1d-1db7-4cd3-868b-8a527460aa84"
SMP_CHAR_UUID = "da2e7828-fbce-4e01-ae9e-261174997c48"

# ATT opcode and handle precede every write.
_ATT_OVERHEAD = 3
_DEFAULT_ATT_MTU = 23
_POLL_INTERVAL_S = 0.01

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")


class BLEGATTSession(PacketSession):
    """Session over the SMP GATT characteristic.

    bleak is asynchronous; the session owns a private event loop and drives
    it only while a call is in progress, so callers see a blocking API.
    """

    def __init__(
        self,
        address: str,
        *,
        mtu: int | None = None,
        mgmt_proto: MgmtProto = MgmtProto.NMP,
        connect_timeout_s: float = 10.0,
    ) -> None:
        super().__init__(mgmt_proto=mgmt_proto, mtu=mtu or _DEFAULT_ATT_MTU - _ATT_OVERHEAD)
        self.address = address
        self.connect_timeout_s = connect_timeout_s
        self._mtu_override = mtu
        self._client: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connected = False
        self._rx = bytearray()
        self._packets: deque[bytes] = deque()

    @property
    def mtu_out(self) -> int:
        if self._mtu_override:
            return self._mtu_override
        if self._client is not None:
            return self._client.mtu_size - _ATT_OVERHEAD
        return self._mtu

    def is_open(self) -> bool:
        return self._client is not None and self._connected

    def open(self) -> None:
        try:
            from bleak import BleakClient  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportConnectError(
                "BLE transport requires 'bleak'. Install dependency and retry."
            ) from exc

        if self.is_open():
            return
        self._teardown()

        self._loop = asyncio.new_event_loop()
        self._rx.clear()
        self._packets.clear()
        client = BleakClient(
            self.address,
            disconnected_callback=self._on_disconnect,
            timeout=self.connect_timeout_s,
        )

        async def _connect() -> None:
            await client.connect()
            await client.start_notify(SMP_CHAR_UUID, self._on_notify)

        try:
            self._loop.run_until_complete(_connect())
        except Exception as exc:
            self._teardown()
            raise TransportConnectError(f"BLE connect failed for {self.address}: {exc}") from exc

        self._client = client
        self._connected = True
        LOGGER.debug("Connected to %s (mtu_out=%d)", self.address, self.mtu_out)

    def close(self) -> None:
        client = self._client
        if client is not None and self._loop is not None:

            async def _disconnect() -> None:
                try:
                    await client.stop_notify(SMP_CHAR_UUID)
                except Exception as exc:
                    LOGGER.debug("stop_notify on %s failed: %s", self.address, exc)
                await client.disconnect()

            try:
                self._loop.run_until_complete(_disconnect())
            except Exception as exc:
                LOGGER.debug("BLE disconnect from %s failed: %s", self.address, exc)
        self._teardown()

    def _teardown(self) -> None:
        self._client = None
        self._connected = False
        if self._loop is not None:
            self._loop.close()
            self._loop = None

    def _on_disconnect(self, _: Any) -> None:
        LOGGER.debug("Peer %s disconnected", self.address)
        self._connected = False

    def _reset_rx(self) -> None:
        if self._rx:
            LOGGER.debug("Discarding %d bytes of an incomplete response", len(self._rx))
        self._rx.clear()

    def _on_notify(self, _: int | str, data: bytearray) -> None:
        self._rx.extend(data)
        while len(self._rx) >= NMP_HDR_SIZE:
            total = NMP_HDR_SIZE + decode_header(bytes(self._rx[:NMP_HDR_SIZE])).len
            if len(self._rx) < total:
                break
            self._packets.append(bytes(self._rx[:total]))
            del self._rx[:total]

    def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        if self._loop is None:
            coro.close()
            raise TransportSendError("BLE session is closed")
        try:
            return self._loop.run_until_complete(coro)
        except TransportError:
            raise
        except Exception as exc:
            raise TransportSendError(f"BLE GATT transfer failed: {exc}") from exc

    def _send_packet(self, data: bytes) -> None:
        if not self.is_open():
            raise TransportSendError(f"BLE peer {self.address} is not connected")
        self._run(self._client.write_gatt_char(SMP_CHAR_UUID, data, response=False))

    def _recv_packet(self, timeout_s: float) -> bytes:
        async def _wait() -> bytes:
            deadline = time.monotonic() + timeout_s
            while not self._packets:
                if not self._connected:
                    raise TransportSendError(f"BLE peer {self.address} disconnected")
                if time.monotonic() >= deadline:
                    raise TransportTimeoutError(
                        f"Timed out waiting for BLE notification on {SMP_CHAR_UUID}"
                    )
                await asyncio.sleep(_POLL_INTERVAL_S)
            return self._packets.popleft()

        return self._run(_wait())
