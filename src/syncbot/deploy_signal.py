"""Deploy-signal polling after a twin has been found."""

from __future__ import annotations

import threading
from typing import Any, Callable
from urllib.error import HTTPError

import structlog

from src.common.constants import DEPLOY_SIGNAL_PATH
from src.common.http import HTTP_ERRORS, http_get_json
from src.syncbot.config import Identity, SyncConfig


class SignalTimeout(RuntimeError):
    """The poll budget ran out without a deploy approval."""


def _noop(*_args: Any) -> None:
    return None


class SignalWaiter:
    """Polls ``<base>/sync/deploySignal`` until ``{"deploy": true}`` arrives.

    The budget is ``config.max_signal_polls`` and is independent of
    ``max_retries``.  Polls are spaced by ``config.retry_interval``.
    A non-2xx answer counts as "not approved".  Network and parse
    failures are emitted as non-fatal ``error`` events.  Both still
    count against the budget.
    """

    def __init__(
        self,
        identity: Identity,
        config: SyncConfig,
        emit: Callable[..., Any] = _noop,
    ) -> None:
        self._url = identity.url(DEPLOY_SIGNAL_PATH)
        self._config = config
        self._emit = emit
        self._log = structlog.get_logger("deploy_signal")

    def poll_once(self) -> bool:
        """One request; ``True`` only for an explicit ``deploy: true``.

        A non-2xx answer is simply "not yet"; network and parse failures raise.
        """
        try:
            body = http_get_json(self._url, timeout=self._config.connection_timeout)
        except HTTPError as exc:
            self._log.debug("signal_not_ready", status=exc.code)
            return False
        return isinstance(body, dict) and body.get("deploy") is True

    def wait(self, stop: threading.Event) -> bool:
        """Block until approval (``True``) or stop (``False``).

        Raises :class:`SignalTimeout` when the budget is exhausted.
        """
        max_polls = self._config.max_signal_polls
        polls = 0
        while not stop.is_set() and polls < max_polls:
            try:
                approved = self.poll_once()
            except HTTP_ERRORS as exc:
                approved = False
                self._log.warning("signal_poll_failed", poll=polls + 1, error=str(exc))
                self._emit("error", exc)

            if stop.is_set():
                return False
            if approved:
                self._log.info("signal_received", poll=polls + 1)
                return True

            polls += 1
            self._log.debug("signal_poll", poll=polls, max_polls=max_polls)
            if polls < max_polls:
                stop.wait(timeout=self._config.retry_interval)

        if stop.is_set():
            return False
        raise SignalTimeout(f"Timed out waiting for deploy signal after {max_polls} polls")
