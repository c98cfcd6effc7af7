#!/usr/bin/env python
"""
waybar-reveal: Hyprland Waybar reveal-on-edge daemon
====================================================

Hides Waybar while windows are open on the active workspace and reveals it
when the cursor touches the top edge of a monitor. Designed for Hyprland on
Wayland.

HOW IT WORKS
------------
Two background threads feed a single event queue:

  1. CursorEdgeDetector polls `hyprctl cursorpos` every
     WAYBAR_REVEAL_POLL_INTERVAL seconds, localizes the cursor to the monitor
     that contains it and emits CursorAtTop(bool) when it crosses the top
     edge. Entering uses ENTER_THRESHOLD px, leaving uses the larger
     EXIT_THRESHOLD px, so a cursor resting on the bar keeps it open.
  2. WindowActivityWatcher reads Hyprland's event socket (socket2). On every
     openwindow / closewindow / *workspace* event it asks Hyprland how many
     windows the active workspace holds and emits WindowsOpen(bool).

The main thread runs VisibilityReconciler, which owns the two flags and
computes

    visible = True if cursor_at_top else not windows_open

Only a change of that decision reaches PeerToggleDriver.

SIGNALLING WAYBAR
-----------------
Waybar has no query API, so the driver keeps a belief of the bar's current
visibility behind a lock and only signals on a mismatch. SIGUSR1 hides and
SIGUSR2 shows, which Waybar honours through its on-sigusr1/on-sigusr2 config
keys:

    "on-sigusr1": "hide",
    "on-sigusr2": "show"

Signals go straight to the pid found with `pgrep -x`. A send that fails
(bar not running, pid gone) is retried RETRY_ATTEMPTS times, RETRY_DELAY
apart, then once more after RETRY_COOLDOWN to cover a bar that is still
restarting. If nothing got through, the belief stays as it was and the next
state change tries again. A bar that comes back under a new pid is assumed
visible, since Waybar always starts visible.

ENVIRONMENT VARIABLES
---------------------
  WAYBAR_REVEAL_PROCNAME         process name to signal (default: waybar)
  WAYBAR_REVEAL_ENTER_THRESHOLD  px from the top that reveals the bar (default: 3)
  WAYBAR_REVEAL_EXIT_THRESHOLD   px from the top that releases it (default: 50)
  WAYBAR_REVEAL_POLL_INTERVAL    cursor poll interval in seconds (default: 0.1)
  WAYBAR_REVEAL_MONITORS         comma-separated monitor IDs to track;
                                 empty = all monitors (default: empty)
  WAYBAR_REVEAL_LOG_FILE         log file path
                                 (default: ~/.local/state/waybar-reveal.log)

LOGGING
-------
Logs to WAYBAR_REVEAL_LOG_FILE at INFO level.
"""

import json
import logging
import os
import queue
import signal
import socket
import subprocess
import threading
import time
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union


WAYBAR_PROC = os.getenv("WAYBAR_REVEAL_PROCNAME", "waybar")
ENTER_THRESHOLD = int(os.getenv("WAYBAR_REVEAL_ENTER_THRESHOLD", "3"))
EXIT_THRESHOLD = int(os.getenv("WAYBAR_REVEAL_EXIT_THRESHOLD", "50"))
POLL_INTERVAL = float(os.getenv("WAYBAR_REVEAL_POLL_INTERVAL", "0.1"))
LOG_FILE = Path(os.getenv(
    "WAYBAR_REVEAL_LOG_FILE",
    str(Path.home() / ".local" / "state" / "waybar-reveal.log"),
))

HIDE_SIGNAL = signal.SIGUSR1
SHOW_SIGNAL = signal.SIGUSR2

RETRY_ATTEMPTS = 3
RETRY_DELAY = 0.05  # seconds
RETRY_COOLDOWN = 0.2  # seconds
SETTLE_DELAY = 0.1  # seconds
LOCK_TIMEOUT = 5  # seconds
SUBPROCESS_TIMEOUT = 5  # seconds
WAYBAR_WAIT_TIMEOUT = 60  # seconds to wait for waybar at startup
QUEUE_POLL_TIMEOUT = 0.5  # seconds

# Event names from socket2 that can change the active workspace's window count.
WINDOW_EVENT_MARKERS = ("openwindow", "closewindow", "workspace")


log = logging.getLogger(__name__)


def setup_logging(log_file: Path = LOG_FILE):
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file),
        ]
    )


def parse_monitor_ids(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    return [int(m.strip()) for m in raw.split(",") if m.strip()]


class BaseModel:
    @classmethod
    def model_validate(cls, data: dict):
        field_names = {(f.name, f.type) for f in fields(cls)}
        filtered_data = {}

        for field_name, field_type in field_names:
            if field_name not in data:
                continue

            if isinstance(field_type, type) and issubclass(field_type, BaseModel):
                filtered_data[field_name] = field_type.model_validate(data[field_name])
            elif isinstance(field_type, type):
                filtered_data[field_name] = field_type(data[field_name])
            else:
                filtered_data[field_name] = data[field_name]

        return cls(**filtered_data)


@dataclass
class CursorSample(BaseModel):
    x: int
    y: int


@dataclass
class MonitorRect(BaseModel):
    x: int
    y: int
    width: int
    height: int
    id: int = -1
    scale: float = 1.0
    transform: int = 0

    def contains(self, pos_x: int, pos_y: int) -> bool:
        # hyprctl reports the unrotated mode size in physical pixels, positions are logical
        scale = self.scale or 1.0
        width = self.width / scale
        height = self.height / scale
        if self.transform % 2:
            # 90 and 270 degrees, flipped or not
            width, height = height, width
        return self.x <= pos_x < self.x + width and self.y <= pos_y < self.y + height


@dataclass
class ActiveWorkspace(BaseModel):
    id: int
    windows: int


@dataclass(frozen=True)
class CursorAtTop:
    value: bool


@dataclass(frozen=True)
class WindowsOpen:
    value: bool


Event = Union[CursorAtTop, WindowsOpen]


# --------------------------------------------------------------------------
# Hyprland queries
# --------------------------------------------------------------------------

def hyprctl_json(*args: str):
    """Run `hyprctl -j <args>` and return the decoded JSON, or None on failure."""
    try:
        output = subprocess.check_output(
            ["hyprctl", "-j", *args],
            stderr=subprocess.DEVNULL,
            timeout=SUBPROCESS_TIMEOUT,
        )
        return json.loads(output)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError, json.JSONDecodeError):
        return None


def is_hyprland_running() -> bool:
    try:
        result = subprocess.run(
            ["hyprctl", "version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=SUBPROCESS_TIMEOUT,
        )
    except (subprocess.TimeoutExpired, OSError):
        return False
    return result.returncode == 0


def get_cursor_position() -> Optional[CursorSample]:
    """Return the current cursor position, or None on failure."""
    data = hyprctl_json("cursorpos")
    if not isinstance(data, dict):
        return None
    try:
        return CursorSample.model_validate(data)
    except (KeyError, TypeError, ValueError):
        return None


def get_monitors() -> Optional[List[MonitorRect]]:
    """Return the monitor layout, or None when Hyprland can't be queried."""
    data = hyprctl_json("monitors")
    if not isinstance(data, list):
        return None

    monitors = []
    for m in data:
        try:
            monitors.append(MonitorRect.model_validate(m))
        except (KeyError, TypeError, ValueError):
            continue
    return monitors


def get_windows_open() -> Optional[bool]:
    """Return True if the active workspace holds any window, None on failure."""
    data = hyprctl_json("activeworkspace")
    if not isinstance(data, dict):
        return None
    try:
        return ActiveWorkspace.model_validate(data).windows > 0
    except (KeyError, TypeError, ValueError):
        return None


def monitor_at(pos_x: int, pos_y: int, monitors: List[MonitorRect]) -> Optional[MonitorRect]:
    """Return the monitor that contains the given desktop coordinates."""
    for monitor in monitors:
        if monitor.contains(pos_x, pos_y):
            return monitor
    return None


def get_hyprland_socket2() -> Optional[Path]:
    """
    Find the Hyprland IPC event socket (socket2) path.

    The path is derived from HYPRLAND_INSTANCE_SIGNATURE, which is unique per
    Hyprland session. $XDG_RUNTIME_DIR/hypr is tried first, then the
    locations older Hyprland releases used.
    """
    sig = os.environ.get("HYPRLAND_INSTANCE_SIGNATURE")
    if not sig:
        return None

    candidates = []
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        candidates.append(Path(runtime_dir) / "hypr" / sig / ".socket2.sock")
    candidates += [
        Path(f"/run/user/{os.getuid()}/hypr/{sig}/.socket2.sock"),
        Path(f"/tmp/hypr/{sig}/.socket2.sock"),
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def connect_event_socket() -> socket.socket:
    sock_path = get_hyprland_socket2()
    if sock_path is None:
        raise ConnectionError("could not find Hyprland socket2 (is HYPRLAND_INSTANCE_SIGNATURE set?)")

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(str(sock_path))
    except OSError:
        sock.close()
        raise
    log.info(f"Listening for Hyprland IPC events on {sock_path}")
    return sock


def iter_socket_lines(sock: socket.socket) -> Iterator[str]:
    """Yield newline-terminated lines from a stream socket until it closes."""
    buf = b""
    while True:
        data = sock.recv(4096)
        if not data:
            return
        buf += data
        while b"\n" in buf:
            line, buf = buf.split(b"\n", 1)
            yield line.decode("utf-8", errors="replace").strip()


def find_peer_pid(procname: str = WAYBAR_PROC) -> Optional[int]:
    """Return the pid of the named process, or None if it isn't running."""
    try:
        result = subprocess.run(
            ["pgrep", "-x", procname],
            capture_output=True,
            text=True,
            timeout=SUBPROCESS_TIMEOUT,
        )
    except (subprocess.TimeoutExpired, OSError):
        return None

    if result.returncode != 0:
        return None
    try:
        return int(result.stdout.split()[0])
    except (IndexError, ValueError):
        return None


def wait_for_waybar(
    timeout: Optional[float] = None,
    stop: Optional[threading.Event] = None,
    find: Optional[Callable[[str], Optional[int]]] = None,
) -> bool:
    """Block until waybar is running. False on timeout or when `stop` is set."""
    if timeout is None:
        timeout = WAYBAR_WAIT_TIMEOUT
    find = find or find_peer_pid
    stop = stop or threading.Event()
    wait_start = time.time()
    while find(WAYBAR_PROC) is None:
        if stop.is_set() or time.time() - wait_start > timeout:
            return False
        stop.wait(0.5)
    return True


# --------------------------------------------------------------------------
# Peer toggle driver
# --------------------------------------------------------------------------

@dataclass(frozen=True)
class RetrySchedule:
    """
    Delay schedule for delivering one visibility change.

    Iterating yields (attempt, delay_before_attempt): `attempts` regular tries
    spaced by `delay`, then one extra try after `cooldown`. The driver stops
    iterating as soon as a try succeeds, so the extra try only happens once
    every regular one has failed.
    """

    attempts: int = RETRY_ATTEMPTS
    delay: float = RETRY_DELAY
    cooldown: float = RETRY_COOLDOWN

    def __iter__(self):
        for attempt in range(1, self.attempts + 1):
            yield attempt, (0.0 if attempt == 1 else self.delay)
        yield self.attempts + 1, self.cooldown


class PeerLocator:
    """
    Caches the bar's pid and notices when it comes back under a new one.

    `pid` and `_last_seen` are guarded by `_lock`; pgrep runs without it.
    """

    def __init__(self, procname: str = WAYBAR_PROC, find: Optional[Callable[[str], Optional[int]]] = None):
        self.procname = procname
        self._find = find or find_peer_pid
        self._lock = threading.Lock()
        self.pid: Optional[int] = None
        self._last_seen: Optional[int] = None

    def _remember(self, pid: Optional[int]) -> Optional[int]:
        """Store a fresh lookup and return the pid seen before it. Needs `_lock`."""
        previous = self._last_seen
        self.pid = pid
        if pid is not None:
            self._last_seen = pid
        return previous

    def locate(self) -> Optional[int]:
        with self._lock:
            if self.pid is not None:
                return self.pid

        pid = self._find(self.procname)
        with self._lock:
            self._remember(pid)
            return self.pid

    def forget(self):
        with self._lock:
            self.pid = None

    def refresh(self) -> bool:
        """Look the pid up again. Returns True if the process was restarted."""
        pid = self._find(self.procname)
        with self._lock:
            previous = self._remember(pid)
        # Overlapping callers see each other's pid, so only one reports a restart.
        return previous is not None and pid is not None and pid != previous


class PeerToggleDriver:
    """
    Brings Waybar into a requested visibility state.

    `believed_visible` is the only record of what the bar shows. It is read
    and written with `_lock` held, and the lock is always released around
    signal sends and sleeps. Every change goes through `_believe`.
    """

    def __init__(
        self,
        locator: Optional[PeerLocator] = None,
        send_signal: Callable[[int, int], None] = os.kill,
        sleep: Callable[[float], None] = time.sleep,
        schedule: RetrySchedule = RetrySchedule(),
        settle: float = SETTLE_DELAY,
        lock_timeout: float = LOCK_TIMEOUT,
        initial_visible: bool = True,
    ):
        self._locator = locator or PeerLocator()
        self._send_signal = send_signal
        self._sleep = sleep
        self._schedule = schedule
        self._settle = settle
        self._lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._believed_visible = initial_visible
        # Bumped on every belief change, so a caller can tell whether another
        # transition happened while it had the lock released.
        self._transitions = 0

    @property
    def believed_visible(self) -> bool:
        with self._lock:
            return self._believed_visible

    def _believe(self, visible: bool):
        """Record a belief change. Needs `_lock`."""
        self._believed_visible = visible
        self._transitions += 1

    def _acquire(self) -> bool:
        if self._lock.acquire(timeout=self._lock_timeout):
            return True
        log.error("Failed to acquire waybar state lock")
        return False

    def _send(self, visible: bool, attempt: int) -> bool:
        pid = self._locator.locate()
        if pid is None:
            log.warning(f"{self._locator.procname} not found (attempt {attempt})")
            return False

        sig = SHOW_SIGNAL if visible else HIDE_SIGNAL
        try:
            self._send_signal(pid, sig)
        except OSError as e:
            # Stale or foreign pid, look the process up again next time.
            self._locator.forget()
            log.warning(f"Failed to send {sig.name} to {self._locator.procname} ({pid}) (attempt {attempt}): {e}")
            return False
        return True

    def set_visible(self, desired: bool):
        """Make waybar visible or hidden. Idempotent, never raises."""
        restarted = self._locator.refresh()

        if not self._acquire():
            return
        held = True
        try:
            if restarted and not self._believed_visible:
                self._believe(True)
                log.info("Waybar restarted. State reset to VISIBLE.")

            if self._believed_visible == desired:
                return

            delivered = False
            sent_at = None
            for attempt, delay in self._schedule:
                if delay:
                    if attempt > self._schedule.attempts:
                        log.warning(f"All {self._schedule.attempts} attempts failed, retrying once after {delay}s")
                    self._lock.release()
                    held = False
                    self._sleep(delay)
                    if not self._acquire():
                        return
                    held = True

                if self._believed_visible == desired:
                    break

                self._lock.release()
                held = False
                ok = self._send(desired, attempt)
                if not self._acquire():
                    return
                held = True

                if self._believed_visible == desired:
                    break
                if ok:
                    self._believe(desired)
                    sent_at = self._transitions
                    delivered = True
                    break

            self._lock.release()
            held = False
            self._sleep(self._settle)
            if not self._acquire():
                return
            held = True

            if self._believed_visible != desired:
                if delivered and self._transitions == sent_at:
                    self._believe(desired)
                elif delivered:
                    log.info("Another caller changed waybar state during settle, keeping it")
                else:
                    log.warning(
                        f"Could not {'show' if desired else 'hide'} waybar, "
                        "will retry on the next state change"
                    )
        finally:
            if held:
                self._lock.release()


# --------------------------------------------------------------------------
# Producers
# --------------------------------------------------------------------------

class CursorEdgeDetector:
    """Polls the cursor and reports when it reaches or leaves the top edge."""

    def __init__(
        self,
        events: "queue.Queue[Event]",
        enter_threshold: int = ENTER_THRESHOLD,
        exit_threshold: int = EXIT_THRESHOLD,
        interval: float = POLL_INTERVAL,
        monitors: Optional[List[int]] = None,
        cursor: Callable[[], Optional[CursorSample]] = get_cursor_position,
        layout: Callable[[], Optional[List[MonitorRect]]] = get_monitors,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if exit_threshold <= enter_threshold:
            raise ValueError(
                f"exit threshold ({exit_threshold}) must be greater than enter threshold ({enter_threshold})"
            )
        self.events = events
        self.enter_threshold = enter_threshold
        self.exit_threshold = exit_threshold
        self.interval = interval
        self.monitors = monitors or []
        self._cursor = cursor
        self._layout = layout
        self._sleep = sleep
        self.at_top = False

    def sample(self) -> Optional[bool]:
        """Return whether the cursor is at the top, or None to skip this tick."""
        pos = self._cursor()
        if pos is None:
            return None

        local_y = pos.y
        layout = self._layout()
        if layout is not None:
            monitor = monitor_at(pos.x, pos.y, layout)
            if monitor is None:
                return None
            if self.monitors and monitor.id not in self.monitors:
                return False
            local_y = pos.y - monitor.y

        threshold = self.exit_threshold if self.at_top else self.enter_threshold
        return local_y <= threshold

    def poll(self) -> Optional[CursorAtTop]:
        at_top = self.sample()
        if at_top is None or at_top == self.at_top:
            return None

        self.at_top = at_top
        event = CursorAtTop(at_top)
        self.events.put(event)
        return event

    def run(self):
        while True:
            self.poll()
            self._sleep(self.interval)


class WindowActivityWatcher:
    """
    Background thread: stream Hyprland IPC events from socket2 and report
    whether the active workspace has windows after every window or workspace
    change.

    Event lines look like `openwindow>>80a6f50,2,kitty,kitty`; only the name
    before `>>` is matched. The payload carries no window count, so every
    relevant event triggers a fresh `hyprctl activeworkspace` query and the
    result is emitted even if it did not change.

    The subscription is made once. If it fails or the stream ends the thread
    exits and the cursor reveal keeps working on its own.
    """

    def __init__(
        self,
        events: "queue.Queue[Event]",
        query: Callable[[], Optional[bool]] = get_windows_open,
        connect: Callable[[], socket.socket] = connect_event_socket,
    ):
        self.events = events
        self._query = query
        self._connect = connect

    def handle_line(self, line: str) -> Optional[WindowsOpen]:
        name, sep, _ = line.partition(">>")
        if not sep or not any(marker in name for marker in WINDOW_EVENT_MARKERS):
            return None

        windows_open = self._query()
        if windows_open is None:
            return None

        event = WindowsOpen(windows_open)
        self.events.put(event)
        return event

    def run(self):
        try:
            sock = self._connect()
        except OSError as e:
            log.error(f"Could not subscribe to Hyprland events: {e}")
            return

        with sock:
            try:
                for line in iter_socket_lines(sock):
                    self.handle_line(line)
            except OSError as e:
                log.warning(f"IPC listener error: {e}")
        log.warning("Hyprland event stream closed, window tracking stopped")


# --------------------------------------------------------------------------
# Reconciler
# --------------------------------------------------------------------------

def decide_visibility(cursor_at_top: bool, windows_open: bool) -> bool:
    """
    Compute the desired Waybar visibility.

    Priority order:
      1. Cursor at the top edge → visible
      2. Windows open → hidden
      3. Otherwise → visible
    """
    if cursor_at_top:
        return True
    return not windows_open


class VisibilityReconciler:
    def __init__(self, driver: PeerToggleDriver, windows_open: bool):
        self.driver = driver
        self.cursor_at_top = False
        self.windows_open = windows_open
        # Start at the right answer so the synthetic startup events are no-ops.
        self.last_visible = decide_visibility(self.cursor_at_top, windows_open)

    def handle(self, event: Event) -> bool:
        """Apply one event. Returns True if the driver was asked to change state."""
        if isinstance(event, CursorAtTop):
            self.cursor_at_top = event.value
        elif isinstance(event, WindowsOpen):
            self.windows_open = event.value
        else:
            raise TypeError(f"unknown event: {event!r}")

        visible = decide_visibility(self.cursor_at_top, self.windows_open)
        if visible == self.last_visible:
            return False

        log.info(f"{'Showing' if visible else 'Hiding'} waybar (cursor_at_top={self.cursor_at_top}, windows_open={self.windows_open})")
        # Recorded before the call: the driver owns retries, a failed change is
        # re-attempted on the next event.
        self.last_visible = visible
        self.driver.set_visible(visible)
        return True

    def run(self, events: "queue.Queue[Event]", stop: Optional[threading.Event] = None):
        """Consume events until `stop` is set and the queue has drained."""
        stop = stop or threading.Event()
        while not (stop.is_set() and events.empty()):
            try:
                event = events.get(timeout=QUEUE_POLL_TIMEOUT)
            except queue.Empty:
                continue

            try:
                self.handle(event)
            except Exception as e:
                # Log but don't crash on unexpected errors
                log.exception(f"Error handling {event}: {e}")


def main():
    setup_logging()

    stop = threading.Event()

    def signal_handler(signum, frame):
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        log.info(f"Received signal {signum}, shutting down...")
        stop.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    if not is_hyprland_running():
        log.error("Hyprland is not running. Exiting.")
        return

    log.info("Waiting for waybar to start...")
    if wait_for_waybar(stop=stop):
        log.info("Waybar detected. Starting autohide loop.")
    elif stop.is_set():
        log.info("Shutting down gracefully.")
        return
    else:
        log.warning(f"Waybar did not start within {WAYBAR_WAIT_TIMEOUT}s, continuing anyway.")

    events: "queue.Queue[Event]" = queue.Queue()
    driver = PeerToggleDriver()
    windows_open = bool(get_windows_open())
    reconciler = VisibilityReconciler(driver, windows_open)

    detector = CursorEdgeDetector(events, monitors=parse_monitor_ids(os.getenv("WAYBAR_REVEAL_MONITORS")))
    watcher = WindowActivityWatcher(events)
    # Daemon threads so they don't block process exit.
    threading.Thread(target=detector.run, name="cursor-edge", daemon=True).start()
    threading.Thread(target=watcher.run, name="window-events", daemon=True).start()

    events.put(CursorAtTop(False))
    events.put(WindowsOpen(windows_open))

    # Waybar starts visible; hide it right away if windows are already open.
    driver.set_visible(reconciler.last_visible)

    reconciler.run(events, stop)

    # Ensure waybar is visible before exiting
    driver.set_visible(True)
    log.info("Shutting down gracefully.")


if __name__ == "__main__":
    main()
