from __future__ import annotations

from custom_components.ring_connect.backend.ws_health import (
    ReconnectBackoff,
    WsConnectionState,
)


def test_backoff_doubles_from_base_until_ceiling() -> None:
    backoff = ReconnectBackoff()

    delays = [backoff.next_delay() for _ in range(12)]

    assert delays[:5] == [2, 4, 8, 16, 32]
    assert max(delays) == 1800
    assert delays[-1] == 1800


def test_backoff_after_ten_failures_and_reset() -> None:
    backoff = ReconnectBackoff()

    delays = [backoff.next_failure_delay() for _ in range(10)]

    assert delays[0] == 900
    assert delays[1:] == [1800] * 9
    assert all(2 <= delay <= 1800 for delay in delays)

    backoff.reset()
    assert backoff.next_delay() == 2


def test_status_updates_report_changes_only() -> None:
    state = WsConnectionState()

    assert state.update_status("connecting", timestamp=10.0)
    assert not state.update_status("connecting", timestamp=11.0)
    assert state.last_status_at == 10.0


def test_sequence_counter_resets_per_connection() -> None:
    state = WsConnectionState()

    assert [state.next_seq() for _ in range(3)] == [1, 2, 3]
    state.reset_seq()
    assert state.next_seq() == 1


def test_silence_tracking() -> None:
    state = WsConnectionState()

    assert state.silence(now=100.0) is None
    assert not state.is_silent(now=100.0)

    state.mark_frame(timestamp=100.0)
    assert state.silence(now=250.0) == 150.0
    assert not state.is_silent(now=399.0)
    assert state.is_silent(now=400.0)

    snapshot = state.snapshot(now=130.0)
    assert snapshot["last_message_at"] == 100.0
    assert snapshot["silence"] == 30.0
