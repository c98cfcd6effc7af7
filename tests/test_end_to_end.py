"""Startup, reveal and re-hide with the real driver and a fake Waybar."""

import waybar_reveal as wr
from conftest import drain


def test_reveal_and_rehide_with_two_windows_open(make_driver, send_signal, events):
    cursor = {"pos": wr.CursorSample(500, 400)}
    layout = [wr.MonitorRect(x=0, y=0, width=1920, height=1080, id=0)]
    detector = wr.CursorEdgeDetector(
        events, enter_threshold=3, exit_threshold=50,
        cursor=lambda: cursor["pos"], layout=lambda: layout,
    )
    driver = make_driver()

    # startup: two windows open, waybar assumed visible
    reconciler = wr.VisibilityReconciler(driver, windows_open=True)
    assert reconciler.last_visible is False
    driver.set_visible(reconciler.last_visible)
    for event in [wr.CursorAtTop(False), wr.WindowsOpen(True)]:
        reconciler.handle(event)
    assert send_signal.signals == [wr.HIDE_SIGNAL]

    cursor["pos"] = wr.CursorSample(500, 0)
    detector.poll()
    for event in drain(events):
        reconciler.handle(event)
    assert send_signal.signals == [wr.HIDE_SIGNAL, wr.SHOW_SIGNAL]

    cursor["pos"] = wr.CursorSample(500, 60)
    detector.poll()
    for event in drain(events):
        reconciler.handle(event)
    assert send_signal.signals == [wr.HIDE_SIGNAL, wr.SHOW_SIGNAL, wr.HIDE_SIGNAL]
    assert driver.believed_visible is False


def test_startup_with_empty_workspace_sends_nothing(make_driver, send_signal):
    driver = make_driver()
    reconciler = wr.VisibilityReconciler(driver, windows_open=False)

    driver.set_visible(reconciler.last_visible)
    reconciler.handle(wr.CursorAtTop(False))
    reconciler.handle(wr.WindowsOpen(False))

    assert send_signal.calls == []
