"""Playback controller state machine and the python-mpv backend."""

import threading
import time

import pytest

from client.playback import MpvPlayer, NotPlaying, PlaybackController, PlaybackState


class LoopingBackend:
    """Plays "forever" until asked to stop; records when it returned."""

    def __init__(self):
        self.started = threading.Event()
        self.returned = threading.Event()

    def __call__(self, path, should_stop):
        self.started.set()
        try:
            while not should_stop():
                time.sleep(0.01)
        finally:
            # Simulate device teardown taking a moment.
            time.sleep(0.05)
            self.returned.set()


class ShortBackend:
    def __init__(self, seconds=0.05):
        self.seconds = seconds

    def __call__(self, path, should_stop):
        time.sleep(self.seconds)


class FailingBackend:
    def __call__(self, path, should_stop):
        raise RuntimeError("no audio device")


def test_stop_returns_after_thread_has_exited():
    backend = LoopingBackend()
    player = PlaybackController(backend)

    assert player.start("song.mp3")
    assert backend.started.wait(2)
    assert player.is_playing
    assert player.state is PlaybackState.PLAYING

    player.stop()
    assert backend.returned.is_set()
    assert not player.is_playing
    assert player.state is PlaybackState.IDLE
    assert player.current_path is None


def test_stop_when_idle_raises_without_blocking():
    player = PlaybackController(LoopingBackend())
    started = time.monotonic()
    with pytest.raises(NotPlaying):
        player.stop()
    assert time.monotonic() - started < 0.5


def test_second_start_is_refused_while_playing():
    backend = LoopingBackend()
    player = PlaybackController(backend)
    assert player.start("one.mp3")
    backend.started.wait(2)

    assert not player.start("two.mp3")
    assert player.current_path == "one.mp3"
    player.stop()

    assert player.start("two.mp3")
    player.stop()


def test_natural_end_returns_to_idle():
    player = PlaybackController(ShortBackend())
    assert player.start("short.mp3")
    assert player.wait(timeout=2)
    assert not player.is_playing
    with pytest.raises(NotPlaying):
        player.stop()


def test_backend_failure_is_kept_and_state_reset():
    player = PlaybackController(FailingBackend())
    player.start("broken.mp3")
    assert player.wait(timeout=2)
    assert isinstance(player.last_error, RuntimeError)
    assert player.state is PlaybackState.IDLE



class FakeMpv:
    """
    Stands in for mpv.MPV: reports property changes to observers the way
    the mpv event thread does. With track_seconds=None the track never ends.
    """

    def __init__(self, track_seconds=None):
        self.track_seconds = track_seconds
        self.observers = {}
        self.played = []
        self.stopped = False
        self.terminated = False

    def observe_property(self, name, handler):
        self.observers[name] = handler
        # mpv reports the current value on registration.
        handler(name, True if name == "idle-active" else None)

    def play(self, path):
        self.played.append(path)
        self.observers["idle-active"]("idle-active", False)
        if self.track_seconds is not None:
            timer = threading.Timer(self.track_seconds, self._reach_end)
            timer.daemon = True
            timer.start()

    def _reach_end(self):
        self.observers["eof-reached"]("eof-reached", True)
        self.observers["idle-active"]("idle-active", True)

    def stop(self):
        self.stopped = True

    def terminate(self):
        self.terminated = True


@pytest.fixture
def track(tmp_path):
    path = tmp_path / "track.mp3"
    path.write_bytes(b"\xff\xfb" * 10)
    return str(path)


def test_mpv_player_is_stopped_promptly(track):
    core = FakeMpv()
    player = PlaybackController(MpvPlayer(player_factory=lambda: core))

    assert player.start(track)
    time.sleep(0.2)
    started = time.monotonic()
    player.stop()

    assert time.monotonic() - started < 1
    assert core.played == [track]
    assert core.stopped
    assert core.terminated
    assert player.last_error is None


def test_mpv_player_returns_at_end_of_track(track):
    core = FakeMpv(track_seconds=0.05)
    backend = MpvPlayer(player_factory=lambda: core)

    assert backend(track, lambda: False) is True
    assert not core.stopped
    assert core.terminated


def test_mpv_player_stop_before_end(track):
    core = FakeMpv()
    backend = MpvPlayer(player_factory=lambda: core)
    assert backend(track, lambda: True) is False
    assert core.stopped and core.terminated


def test_mpv_player_missing_file_does_not_create_core(tmp_path):
    created = []
    backend = MpvPlayer(player_factory=lambda: created.append(1))
    with pytest.raises(FileNotFoundError):
        backend(str(tmp_path / "missing.mp3"), lambda: False)
    assert created == []


def test_controller_natural_end_with_mpv_backend(track):
    player = PlaybackController(MpvPlayer(player_factory=lambda: FakeMpv(track_seconds=0.05)))
    assert player.start(track)
    assert player.wait(timeout=2)
    assert not player.is_playing
