"""Single-shot twin detection against the coordination service ping URL."""

from __future__ import annotations

import structlog

from src.common.http import HTTP_ERRORS, http_get_json
from src.syncbot.config import Identity, SyncConfig
from src.syncbot.state import PeerRecord


class ConnectionProber:
    """Issues one bounded-timeout ping per call.

    Every failure kind (timeout, refused connection, non-2xx status,
    malformed body, wrong code, our own id echoed back) is reported the
    same way: ``None``.  The retry loop does not distinguish them.
    """

    def __init__(self, identity: Identity, config: SyncConfig) -> None:
        self._identity = identity
        self._config = config
        self._log = structlog.get_logger("prober")

    def probe_once(self) -> PeerRecord | None:
        """Return the twin's record if the ping response identifies one."""
        url = self._config.ping_url
        try:
            data = http_get_json(url, timeout=self._config.connection_timeout)
        except HTTP_ERRORS as exc:
            self._log.debug("probe_failed", url=url, error=str(exc))
            return None

        record = PeerRecord.from_payload(data)
        if record is None:
            self._log.debug("probe_malformed", url=url)
            return None
        if not record.matches(self._identity, self._config):
            self._log.debug(
                "probe_mismatch",
                url=url,
                peer_id=record.bot_id,
                internal_code=record.internal_code,
            )
            return None
        return record
