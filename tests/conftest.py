import queue

import pytest

import waybar_reveal as wr


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


class RecordingSignal:
    """Fake os.kill that fails the first `failures` calls."""

    def __init__(self, failures=0, error=ProcessLookupError):
        self.failures = failures
        self.error = error
        self.calls = []

    def __call__(self, pid, sig):
        self.calls.append((pid, sig))
        if len(self.calls) <= self.failures:
            raise self.error(3, "No such process")

    @property
    def signals(self):
        return [sig for _, sig in self.calls]


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def send_signal():
    return RecordingSignal()


@pytest.fixture
def events():
    return queue.Queue()


@pytest.fixture
def make_driver(sleep, send_signal):
    def _make(pid=4242, **kwargs):
        kwargs.setdefault("locator", wr.PeerLocator("waybar", find=lambda name: pid))
        kwargs.setdefault("send_signal", send_signal)
        kwargs.setdefault("sleep", sleep)
        return wr.PeerToggleDriver(**kwargs)

    return _make


def drain(q):
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items
