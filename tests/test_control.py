from __future__ import annotations

from feedrunner.control import SessionControl


def test_wait_runs_full_duration(clock, control):
    assert control.wait(500) is True
    assert abs(clock.now - 0.5) < 1e-6


def test_pause_time_is_not_counted(clock, control):
    clock.at(1.0, control.pause)
    clock.at(11.0, control.resume)

    assert control.wait(5000) is True

    remaining_after_resume = clock.now - 11.0
    assert remaining_after_resume >= 3.9


def test_stop_cuts_wait_short(clock, control):
    clock.at(0.3, control.request_stop)

    assert control.wait(10_000) is False
    assert clock.now < 0.5


def test_stop_while_paused_ends_wait(clock, control):
    clock.at(0.2, control.pause)
    clock.at(3.0, control.request_stop)

    assert control.wait(1000) is False
    assert clock.now < 3.2


def test_zero_wait_reports_stop_state(control):
    assert control.wait(0) is True
    control.request_stop()
    assert control.wait(0) is False


def test_wait_while_paused_announces_once(clock, control):
    announcements = []
    control.pause()
    clock.at(0.5, control.resume)

    assert control.wait_while_paused(on_paused=lambda: announcements.append("paused")) is True
    assert announcements == ["paused"]


def test_wait_while_paused_returns_false_on_stop():
    control = SessionControl(sleep=lambda seconds: control.request_stop())
    control.pause()
    assert control.wait_while_paused() is False
