"""Twin pairing and deploy-trigger state machine.

Flow of one run (started by :meth:`SyncManager.start`)::

    searching --probe ok--> connected --> deploying --signal--> deploy
        |                                     |
        +--retries exhausted--> listening     +--no signal / failure--> error

``stop()`` moves to ``idle`` at once.  In-flight requests are not aborted;
whatever they return afterwards is discarded.
"""

from __future__ import annotations

import dataclasses
import threading
from functools import partial
from typing import Any

import structlog

from src.common.constants import PING_PATH, WAKE_PATH
from src.common.http import HTTP_ERRORS, http_post_json
from src.syncbot.config import Identity, SyncConfig, build_config
from src.syncbot.deploy_signal import SignalTimeout, SignalWaiter
from src.syncbot.deployer import ArtifactDeployer, DeploymentError
from src.syncbot.events import EventEmitter
from src.syncbot.prober import ConnectionProber
from src.syncbot.state import PeerRecord, SyncState


class _Run:
    """Per-start cancellation token and retry counter."""

    def __init__(self) -> None:
        self.stop = threading.Event()
        self.retries = 0


class SyncManager(EventEmitter):
    """Finds a twin bot, waits for the deploy signal and launches the artifacts.

    Usage::

        manager = SyncManager(Identity("Rob1", "https://sync.example.com"),
                              overrides={"max_retries": 3})
        manager.on("state_change", lambda state: print(state))
        manager.start()
        manager.join()

    All progress is reported through events (see ``EventEmitter``).  One
    instance is meant to be driven by one caller.  ``start()`` while a
    previous run is still active cancels that run's token so it goes
    silent, but both threads may briefly have requests in flight.
    """

    def __init__(
        self,
        identity: Identity,
        config: SyncConfig | None = None,
        *,
        overrides: dict[str, Any] | None = None,
    ) -> None:
        super().__init__()
        self.identity = identity
        if config is None:
            config = build_config(identity, overrides)
        elif not config.ping_url:
            config = dataclasses.replace(config, ping_url=identity.url_for_self(PING_PATH))
        config.validate()
        self.config = config

        self._state = SyncState.IDLE
        self._run: _Run | None = None
        self._thread: threading.Thread | None = None
        # Held while a state change (and its events) is applied
        self._state_lock = threading.RLock()
        self._prober = ConnectionProber(identity, self.config)
        self._log = structlog.get_logger("sync_manager").bind(bot_id=identity.bot_id)

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def retries(self) -> int:
        """Failed probe attempts since the last ``start()``."""
        return self._run.retries if self._run is not None else 0

    def start(self) -> threading.Thread:
        """Reset the run and begin probing on a background daemon thread."""
        run = _Run()
        with self._state_lock:
            if self._run is not None:
                self._run.stop.set()
            self._run = run
            self._set_state(SyncState.SEARCHING)

        self._thread = threading.Thread(
            target=self._run_loop,
            args=(run,),
            name=f"syncbot-{self.identity.bot_id}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        """Cancel the current run cooperatively and go ``idle`` immediately."""
        with self._state_lock:
            if self._run is not None:
                self._run.stop.set()
            self._set_state(SyncState.IDLE)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker thread.  Returns ``True`` once it has finished."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def wake_up_gemelo(self) -> bool:
        """Ask the coordination service to have our twin pair towards us.

        Only meaningful while ``listening``; otherwise nothing is sent and
        nothing is emitted.  Failures are reported as non-fatal ``error``
        events and never change state.
        """
        if self._state is not SyncState.LISTENING:
            return False

        url = self.identity.url_for_self(WAKE_PATH)
        try:
            http_post_json(
                url,
                {"internalCode": self.config.internal_code},
                timeout=self.config.connection_timeout,
            )
        except HTTP_ERRORS as exc:
            self._log.warning("wake_failed", url=url, error=str(exc))
            self.emit("error", exc)
            return False

        self._log.info("woke_gemelo", url=url)
        self.emit("woke_gemelo")
        return True

    # ── State handling ───────────────────────────────────────────────────

    def _set_state(self, state: SyncState) -> None:
        self._state = state
        self._log.info("state_change", state=state.value)
        self.emit("state_change", state)

    def _transition(self, run: _Run, state: SyncState) -> bool:
        """Apply *state* unless *run* has been stopped."""
        with self._state_lock:
            if run.stop.is_set():
                return False
            self._set_state(state)
            return True

    def _emit(self, run: _Run, event: str, *args: Any) -> None:
        """Emit on behalf of *run*; a stopped run stays silent."""
        with self._state_lock:
            if run.stop.is_set():
                return
            self.emit(event, *args)

    def _set_error(self, run: _Run, cause: BaseException) -> None:
        """Single exit for every fatal condition."""
        with self._state_lock:
            if run.stop.is_set():
                return
            self._log.error("sync_error", error=str(cause), error_type=type(cause).__name__)
            self._set_state(SyncState.ERROR)
            self.emit("error", cause)

    # ── Worker ───────────────────────────────────────────────────────────

    def _run_loop(self, run: _Run) -> None:
        try:
            self._attempt_connection_loop(run)
        except Exception as exc:
            self._set_error(run, exc)

    def _attempt_connection_loop(self, run: _Run) -> None:
        max_retries = self.config.max_retries
        while not run.stop.is_set() and run.retries < max_retries:
            self._emit(run, "attempt", run.retries + 1)
            self._log.debug("probe_attempt", attempt=run.retries + 1, max_retries=max_retries)

            peer = self._prober.probe_once()
            if run.stop.is_set():
                return
            if peer is not None:
                self._on_paired(run, peer)
                return

            run.retries += 1
            self._emit(run, "retrying", run.retries)
            if run.retries >= max_retries:
                break
            run.stop.wait(timeout=self.config.retry_interval)

        if self._transition(run, SyncState.LISTENING):
            self._log.info("no_twin_found", attempts=run.retries)
            self._emit(run, "listening")

    def _on_paired(self, run: _Run, peer: PeerRecord) -> None:
        self._log.info("gemelo_found", peer_id=peer.bot_id, attempts=run.retries + 1)
        self._emit(run, "gemelo_found", peer.bot_id)
        if not self._transition(run, SyncState.CONNECTED):
            return
        self._emit(run, "connected")
        self._await_signal_and_deploy(run)

    def _await_signal_and_deploy(self, run: _Run) -> None:
        emit = partial(self._emit, run)
        emit("waiting_deploy_signal")
        if not self._transition(run, SyncState.DEPLOYING):
            return

        waiter = SignalWaiter(self.identity, self.config, emit=emit)
        try:
            approved = waiter.wait(run.stop)
        except SignalTimeout as exc:
            emit("deploy_signal_timeout")
            self._set_error(run, exc)
            return
        if not approved:
            return

        emit("deploy_signal_received")
        deployer = ArtifactDeployer(self.config, emit=emit)
        try:
            deployed = deployer.deploy(run.stop)
        except DeploymentError as exc:
            self._set_error(run, exc)
            return
        if not deployed:
            self._log.info("deploy_abandoned", reason="stopped")
