from __future__ import annotations

import sys
import threading

import pytest

from src.syncbot.config import Identity, SyncConfig
from src.syncbot.deploy_signal import SignalTimeout
from src.syncbot.deployer import DeploymentError
from src.syncbot.manager import SyncManager
from src.syncbot.state import SyncState

PING = "/sync/ping"
SIGNAL = "/sync/deploySignal"
WAKE = "/sync/wake"

PEER = {"internalCode": 720, "botId": "other"}


def _manager(service, tmp_path=None, **overrides) -> SyncManager:
    settings = {
        "max_retries": 3,
        "retry_interval": 0.01,
        "connection_timeout": 2.0,
        "internal_code": 720,
    }
    if tmp_path is not None:
        settings["deploy_path"] = tmp_path / "bots"
    settings.update(overrides)
    return SyncManager(Identity("self", service.base_url), overrides=settings)


def test_exhausted_retries_end_in_listening(service, recorder_factory):
    service.route("GET", PING, (500, "down"))
    manager = _manager(service)
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=5)

    assert rec.names() == [
        "attempt", "retrying", "attempt", "retrying", "attempt", "retrying", "listening",
    ]
    assert rec.args_of("attempt") == [(1,), (2,), (3,)]
    assert rec.args_of("retrying") == [(1,), (2,), (3,)]
    assert rec.states() == ["searching", "listening"]
    assert manager.state is SyncState.LISTENING
    assert manager.retries == 3
    assert len(service.hits(PING)) == 3
    assert service.hits(SIGNAL) == []


def test_peer_found_on_second_attempt(service, recorder_factory):
    service.route("GET", PING, [(500, "down"), (200, PEER)])
    service.route("GET", SIGNAL, (200, {"deploy": False}))
    manager = _manager(service, retry_interval=0.2)
    rec = recorder_factory(manager)

    manager.start()
    assert rec.wait_for_state("deploying")
    assert manager.state is SyncState.DEPLOYING

    assert rec.names()[:6] == [
        "attempt", "retrying", "attempt", "gemelo_found", "connected", "waiting_deploy_signal",
    ]
    assert rec.args_of("gemelo_found") == [("other",)]
    assert "listening" not in rec.names()

    manager.stop()
    assert manager.join(timeout=5)
    assert rec.states() == ["searching", "connected", "deploying", "idle"]


def test_own_echo_is_never_paired(service, recorder_factory):
    service.route("GET", PING, (200, {"internalCode": 720, "botId": "self"}))
    manager = _manager(service, max_retries=2)
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=5)
    assert "gemelo_found" not in rec.names()
    assert manager.state is SyncState.LISTENING


def test_full_deploy_after_signal(service, tmp_path, recorder_factory):
    service.route("GET", PING, (200, PEER))
    service.route("GET", SIGNAL, [(200, {"deploy": False}), (200, {"deploy": True})])
    service.route("GET", "/files/bot.py", (200, "open('started', 'w').write('yes')\n"))
    manager = _manager(
        service,
        tmp_path,
        artifact_urls=[service.url("/files/bot.py")],
        exec_command=f'"{sys.executable}" bot.py',
    )
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=10)

    assert rec.names() == [
        "attempt",
        "gemelo_found",
        "connected",
        "waiting_deploy_signal",
        "deploy_signal_received",
        "deploy_start",
        "download_start",
        "download_complete",
        "deploy_files_written",
        "exec_start",
        "exec_success",
        "deploy_success",
    ]
    # deploying is also the terminal success state
    assert manager.state is SyncState.DEPLOYING
    assert rec.states() == ["searching", "connected", "deploying"]
    assert (tmp_path / "bots" / "started").read_text() == "yes"
    assert len(service.hits(SIGNAL)) == 2


def test_signal_timeout_moves_to_error_once(service, recorder_factory):
    service.route("GET", PING, (200, PEER))
    service.route("GET", SIGNAL, (200, {"deploy": False}))
    manager = _manager(service)
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=10)

    assert len(service.hits(SIGNAL)) == 30
    assert rec.names().count("deploy_signal_timeout") == 1
    assert rec.names()[-2:] == ["deploy_signal_timeout", "error"]
    (cause,) = rec.args_of("error")[-1]
    assert isinstance(cause, SignalTimeout)
    assert manager.state is SyncState.ERROR
    assert rec.states()[-1] == "error"


def test_deploy_failure_moves_to_error(service, tmp_path, recorder_factory):
    service.route("GET", PING, (200, PEER))
    service.route("GET", SIGNAL, (200, {"deploy": True}))
    service.route("GET", "/a.js", (500, "broken"))
    service.route("GET", "/b.js", (200, "b"))
    manager = _manager(
        service,
        tmp_path,
        artifact_urls=[service.url("/a.js"), service.url("/b.js")],
    )
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=5)

    assert manager.state is SyncState.ERROR
    (cause,) = rec.args_of("error")[-1]
    assert isinstance(cause, DeploymentError)
    assert service.hits("/b.js") == []
    assert "exec_start" not in rec.names()


def test_stop_discards_in_flight_probe_result(service, recorder_factory):
    entered = threading.Event()
    release = threading.Event()

    def held(_req):
        entered.set()
        release.wait(timeout=5)
        return 200, PEER

    service.route("GET", PING, held)
    manager = _manager(service)
    rec = recorder_factory(manager)

    manager.start()
    assert entered.wait(timeout=5)
    manager.stop()
    assert manager.state is SyncState.IDLE
    seen_at_stop = list(rec.events)

    release.set()
    assert manager.join(timeout=5)

    assert rec.events == seen_at_stop
    assert manager.state is SyncState.IDLE
    assert "gemelo_found" not in rec.names()


def test_stop_during_retry_sleep_prevents_listening(service, recorder_factory):
    service.route("GET", PING, (500, "down"))
    manager = _manager(service, max_retries=5, retry_interval=5.0)
    rec = recorder_factory(manager)

    manager.start()
    assert rec.wait_for("retrying")
    manager.stop()
    assert manager.join(timeout=2)

    assert manager.state is SyncState.IDLE
    assert "listening" not in rec.names()
    assert len(service.hits(PING)) == 1


def test_start_resets_retry_counter(service):
    service.route("GET", PING, (500, "down"))
    manager = _manager(service, max_retries=2)

    manager.start()
    assert manager.join(timeout=5)
    assert manager.retries == 2

    manager.start()
    assert manager.state is SyncState.SEARCHING
    assert manager.join(timeout=5)
    assert manager.retries == 2
    assert len(service.hits(PING)) == 4


def test_zero_retries_goes_straight_to_listening(service, recorder_factory):
    manager = _manager(service, max_retries=0)
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=5)
    assert rec.names() == ["listening"]
    assert service.hits(PING) == []


def test_listener_exception_is_funneled_into_error(service, recorder_factory):
    service.route("GET", PING, (200, PEER))
    manager = _manager(service)

    def boom(_peer_id):
        raise RuntimeError("observer crashed")

    manager.on("gemelo_found", boom)
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=5)

    assert manager.state is SyncState.ERROR
    (cause,) = rec.args_of("error")[-1]
    assert str(cause) == "observer crashed"


# ── wake_up_gemelo ──────────────────────────────────────────────────────────


def test_wake_is_noop_unless_listening(service, recorder_factory):
    manager = _manager(service)
    rec = recorder_factory(manager)

    assert manager.wake_up_gemelo() is False
    assert service.hits(WAKE, method="POST") == []
    assert rec.events == []


def test_wake_posts_pairing_code_while_listening(service, recorder_factory):
    service.route("GET", PING, (500, "down"))
    service.route("POST", WAKE, (200, {"ok": True}))
    manager = _manager(service, max_retries=1)
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=5)
    assert manager.wake_up_gemelo() is True

    (request,) = service.hits(WAKE, method="POST")
    assert request["query"] == {"botId": "self"}
    assert request["body"] == {"internalCode": 720}
    assert rec.names()[-1] == "woke_gemelo"
    assert manager.state is SyncState.LISTENING


def test_wake_failure_is_non_fatal(service, recorder_factory):
    service.route("GET", PING, (500, "down"))
    service.route("POST", WAKE, (503, "unavailable"))
    manager = _manager(service, max_retries=1)
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=5)
    assert manager.wake_up_gemelo() is False

    assert rec.names()[-1] == "error"
    assert manager.state is SyncState.LISTENING


def test_invalid_config_is_rejected_at_construction(service):
    with pytest.raises(ValueError):
        _manager(service, max_retries=-2)


def test_prebuilt_config_gets_ping_url_derived(service, recorder_factory):
    service.route("GET", PING, (200, PEER))
    service.route("GET", SIGNAL, (200, {"deploy": False}))
    config = SyncConfig(max_retries=2, retry_interval=0.2, connection_timeout=2.0)
    manager = SyncManager(Identity("self", service.base_url), config)
    rec = recorder_factory(manager)

    assert manager.config.ping_url == f"{service.base_url}/sync/ping?botId=self"

    manager.start()
    assert rec.wait_for_state("deploying")
    manager.stop()
    assert manager.join(timeout=5)

    assert rec.args_of("gemelo_found") == [("other",)]
    assert service.hits(PING)[0]["query"] == {"botId": "self"}


def test_prebuilt_config_keeps_explicit_ping_url(service):
    config = SyncConfig(ping_url=f"{service.base_url}/custom")
    manager = SyncManager(Identity("self", service.base_url), config)
    assert manager.config.ping_url == f"{service.base_url}/custom"


def test_stop_between_artifacts_leaves_run_idle(service, tmp_path, recorder_factory):
    service.route("GET", PING, (200, PEER))
    service.route("GET", SIGNAL, (200, {"deploy": True}))
    service.route("GET", "/b.js", (200, "b"))
    manager = _manager(
        service,
        tmp_path,
        artifact_urls=[service.url("/a.js"), service.url("/b.js")],
    )

    def stop_on_first(_req):
        manager.stop()
        return 200, "a"

    service.route("GET", "/a.js", stop_on_first)
    rec = recorder_factory(manager)

    manager.start()
    assert manager.join(timeout=5)

    assert manager.state is SyncState.IDLE
    assert service.hits("/b.js") == []
    assert "deploy_success" not in rec.names()
    assert "error" not in rec.names()
