"""Tests for cursor localization and the top-edge hysteresis."""

import pytest

import waybar_reveal as wr
from conftest import drain


DUAL_MONITORS = [
    wr.MonitorRect(x=0, y=0, width=1920, height=1080, id=0),
    wr.MonitorRect(x=1920, y=0, width=1920, height=1080, id=1),
]


class Cursor:
    def __init__(self, x=0, y=500):
        self.pos = wr.CursorSample(x, y)

    def move(self, x, y):
        self.pos = wr.CursorSample(x, y)

    def __call__(self):
        return self.pos


def make_detector(events, cursor, layout=DUAL_MONITORS, **kwargs):
    kwargs.setdefault("enter_threshold", 3)
    kwargs.setdefault("exit_threshold", 50)
    return wr.CursorEdgeDetector(events, cursor=cursor, layout=lambda: layout, **kwargs)


def test_enter_threshold_reveals(events):
    cursor = Cursor(100, 3)
    detector = make_detector(events, cursor)

    assert detector.poll() == wr.CursorAtTop(True)
    assert drain(events) == [wr.CursorAtTop(True)]


def test_below_enter_threshold_stays_hidden(events):
    detector = make_detector(events, Cursor(100, 4))

    assert detector.poll() is None
    assert events.empty()


def test_hysteresis_holds_until_exit_threshold(events):
    cursor = Cursor(100, 0)
    detector = make_detector(events, cursor)
    detector.poll()

    cursor.move(100, 4)
    assert detector.poll() is None
    cursor.move(100, 50)
    assert detector.poll() is None
    cursor.move(100, 51)
    assert detector.poll() == wr.CursorAtTop(False)

    assert drain(events) == [wr.CursorAtTop(True), wr.CursorAtTop(False)]


def test_only_state_changes_are_emitted(events):
    cursor = Cursor(100, 0)
    detector = make_detector(events, cursor)

    for _ in range(5):
        detector.poll()

    assert drain(events) == [wr.CursorAtTop(True)]


def test_cursor_is_attributed_to_second_monitor():
    monitor = wr.monitor_at(1920 + 10, 5, DUAL_MONITORS)

    assert monitor.id == 1


def test_threshold_uses_monitor_local_y(events):
    stacked = [
        wr.MonitorRect(x=0, y=0, width=1920, height=1080, id=0),
        wr.MonitorRect(x=0, y=1080, width=1920, height=1080, id=1),
    ]
    cursor = Cursor(10, 1080 + 2)
    detector = make_detector(events, cursor, layout=stacked)

    assert detector.poll() == wr.CursorAtTop(True)


def test_cursor_outside_every_monitor_skips_tick(events):
    detector = make_detector(events, Cursor(5000, 0))

    assert detector.sample() is None
    assert detector.poll() is None


def test_unavailable_cursor_skips_tick(events):
    detector = make_detector(events, lambda: None)

    assert detector.sample() is None
    assert events.empty()


def test_missing_layout_falls_back_to_global_y(events):
    detector = make_detector(events, Cursor(100, 0), layout=None)

    assert detector.sample() is True


def test_untracked_monitor_never_reveals(events):
    detector = make_detector(events, Cursor(1930, 0), monitors=[0])

    assert detector.sample() is False
    assert detector.poll() is None


def test_scaled_monitor_uses_logical_size():
    monitor = wr.MonitorRect(x=0, y=0, width=3840, height=2160, scale=2.0)

    assert monitor.contains(1919, 0)
    assert not monitor.contains(1920, 0)


def test_exit_threshold_must_exceed_enter(events):
    with pytest.raises(ValueError):
        wr.CursorEdgeDetector(events, enter_threshold=50, exit_threshold=50)


def test_run_polls_on_fixed_interval(events):
    class Stop(Exception):
        pass

    sleeps = []

    def sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 3:
            raise Stop

    cursor = Cursor(100, 0)
    detector = make_detector(events, cursor, interval=0.1, sleep=sleep)

    with pytest.raises(Stop):
        detector.run()

    assert sleeps == [0.1, 0.1, 0.1]
    assert drain(events) == [wr.CursorAtTop(True)]


@pytest.mark.parametrize("transform", [1, 3, 5, 7])
def test_rotated_monitor_swaps_width_and_height(transform):
    portrait = wr.MonitorRect(x=0, y=0, width=1920, height=1080, transform=transform)

    assert portrait.contains(1079, 1919)
    assert not portrait.contains(1080, 0)
    assert not portrait.contains(0, 1920)


@pytest.mark.parametrize("transform", [0, 2, 4, 6])
def test_unrotated_monitor_keeps_mode_size(transform):
    landscape = wr.MonitorRect(x=0, y=0, width=1920, height=1080, transform=transform)

    assert landscape.contains(1919, 1079)
    assert not landscape.contains(0, 1080)


def test_rotated_monitor_beside_landscape(events):
    layout = [
        wr.MonitorRect(x=0, y=0, width=2560, height=1440, id=0, transform=1),
        wr.MonitorRect(x=1440, y=500, width=1920, height=1080, id=1),
    ]
    detector = make_detector(events, Cursor(1500, 501), layout=layout)

    assert wr.monitor_at(1439, 2000, layout).id == 0
    assert detector.poll() == wr.CursorAtTop(True)
