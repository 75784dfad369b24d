"""Image upgrade: erase followed by upload, surviving dropped connections.

Some hardware and BLE connection settings cause the link to drop while flash
is being erased or written. The upgrade sequence is:

1. Send an image erase request, unless erasing is disabled.
2. If the erase fails because the link dropped, reopen the session. If that
   fails, abort with the original error; otherwise continue at step 3
   without knowing whether the erase completed.
3. Upload the image. If the link drops before the final chunk is
   acknowledged, reopen the session and resend from the last offset the
   device confirmed. There is no retry limit; bounding the attempts is up
   to the transport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from nmctl.core.errors import TransportError
from nmctl.core.model import ImageUpgradeResult, Result, TxOptions
from nmctl.core.nmp import ImageEraseRsp, ImageUploadRsp
from nmctl.core.xact import ImageEraseXact, ImageUploadProgressFn, ImageUploadXact
from nmctl.transports.base import Session

LOGGER = logging.getLogger(__name__)


def rescue(session: Session, err: TransportError) -> None:
    """Try to recover from `err` by reopening a closed session.

    Returns normally when the session was reopened; otherwise re-raises
    `err`. A session that is still open means the failure was not a
    disconnect, so there is nothing to recover.
    """
    if session.is_open():
        LOGGER.warning("Transport failure on an open session; not retrying: %s", err)
        raise err

    LOGGER.warning("Session closed (%s); reopening", err)
    try:
        session.open()
    except TransportError as open_err:
        LOGGER.warning("Reopen failed: %s", open_err)
        raise err from open_err
    LOGGER.info("Session reopened")


@dataclass
class ImageUpgradeXact:
    data: bytes
    no_erase: bool = False
    progress_cb: ImageUploadProgressFn | None = None
    tx_options: TxOptions = field(default_factory=TxOptions)

    def _run_erase(self, session: Session) -> Result[ImageEraseRsp]:
        try:
            return ImageEraseXact(tx_options=self.tx_options).run(session)
        except TransportError as err:
            rescue(session, err)
        # Rescued, but the erase response was lost.
        return Result()

    def _run_upload(self, session: Session) -> Result[ImageUploadRsp]:
        start_off = 0

        def _track(rsp: ImageUploadRsp) -> None:
            nonlocal start_off
            if rsp.rc == 0:
                start_off = rsp.off
            if self.progress_cb is not None:
                self.progress_cb(rsp)

        while True:
            xact = ImageUploadXact(
                data=self.data,
                start_off=start_off,
                progress_cb=_track,
                tx_options=self.tx_options,
            )
            try:
                return xact.run(session)
            except TransportError as err:
                rescue(session, err)
            LOGGER.info("Resuming image upload at offset %d of %d", start_off, len(self.data))

    def run(self, session: Session) -> ImageUpgradeResult:
        erase_res: Result[ImageEraseRsp] | None = None
        if not self.no_erase:
            erase_res = self._run_erase(session)
        upload_res = self._run_upload(session)
        return ImageUpgradeResult(erase_res=erase_res, upload_res=upload_res)
