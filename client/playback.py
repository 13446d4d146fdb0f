# client/playback.py
# Plays one MP3 at a time on a background thread with cooperative stop.

import errno        # missing-file errors
import os           # file checks
import threading    # playback thread and its condition
from enum import Enum

#### Constants ####
POLL_INTERVAL = 0.05        # Seconds between stop-flag checks


class PlaybackState(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    STOP_REQUESTED = "stop-requested"


class NotPlaying(Exception):
    """stop() was called while nothing was playing."""


#### Audio backend ####
def create_mpv_player():
    """
    Audio-only mpv core: no video output, no youtube-dl hook.

    Importing mpv loads libmpv, so it happens on first playback only.
    """
    import mpv
    return mpv.MPV(vo="null", ytdl=False, idle=True)


class MpvPlayer:
    """
    Audio backend built on python-mpv.

    Called as backend(path, should_stop) on the playback thread. One mpv
    core is created per track. The "eof-reached" and "idle-active"
    observers mark the end of the track; should_stop() is polled in
    between, and a stop request stops the core. The core is terminated
    before returning on every path.

    Returns:
        bool: True if the track played to the end, False if it was stopped.
    """

    def __init__(self, player_factory=create_mpv_player, poll_interval=POLL_INTERVAL):
        self._player_factory = player_factory
        self.poll_interval = poll_interval

    def __call__(self, path, should_stop):
        if not os.path.isfile(path):
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)

        player = self._player_factory()
        loaded = threading.Event()
        finished = threading.Event()

        def _handle_idle(name, value):
            # mpv is idle before the file loads and again once it is done.
            if value is False:
                loaded.set()
            elif value and loaded.is_set():
                finished.set()

        def _handle_eof(name, value):
            if value:
                finished.set()

        try:
            player.observe_property("idle-active", _handle_idle)
            player.observe_property("eof-reached", _handle_eof)
            player.play(path)

            while not finished.wait(self.poll_interval):
                if should_stop():
                    player.stop()
                    return False
            return True
        finally:
            player.terminate()


#### Playback controller ####
class PlaybackController:
    """
    Owns the playback state and the single playback thread.

    State transitions (all under one condition lock):
        IDLE --start()--> PLAYING --stop()--> STOP_REQUESTED --thread exits--> IDLE
        PLAYING --track ends--> IDLE

    The backend must poll should_stop() often; the thread is never
    cancelled from outside.
    """

    def __init__(self, backend=None):
        self._backend = backend or MpvPlayer()
        self._cond = threading.Condition()
        self._state = PlaybackState.IDLE
        self._thread = None
        self.current_path = None
        self.last_error = None

    @property
    def state(self):
        with self._cond:
            return self._state

    @property
    def is_playing(self):
        """Cached "currently playing" signal: True until the thread has finished."""
        return self.state is not PlaybackState.IDLE

    def start(self, path):
        """
        Start playing path on a new thread.

        Returns:
            bool: True if playback started, False if a track is already
                  active (call stop() first).
        """
        with self._cond:
            if self._state is not PlaybackState.IDLE:
                return False
            self._state = PlaybackState.PLAYING
            self.current_path = path
            self.last_error = None
            self._thread = threading.Thread(
                target=self._run,
                args=(path,),
                name="playback",
                daemon=True,
            )
            self._thread.start()
        print(f"[i] Playing {path}")
        return True

    def _should_stop(self):
        with self._cond:
            return self._state is PlaybackState.STOP_REQUESTED

    def _run(self, path):
        try:
            self._backend(path, self._should_stop)
        except Exception as exc:
            self.last_error = exc
            print(f"[x] Playback of '{path}' failed: {exc}")
        finally:
            with self._cond:
                self._state = PlaybackState.IDLE
                self._thread = None
                self.current_path = None
                self._cond.notify_all()

    def stop(self):
        """
        Request a stop and block until the playback thread has exited.

        Raises:
            NotPlaying: If nothing is playing (returns without blocking).
        """
        with self._cond:
            thread = self._thread
            if self._state is PlaybackState.IDLE or thread is None:
                raise NotPlaying("Nothing is playing")
            self._state = PlaybackState.STOP_REQUESTED
            self._cond.wait_for(lambda: self._thread is not thread)

        thread.join()
        print("[i] Playback stopped.")

    def wait(self, timeout=None):
        """
        Block until the current track ends by itself.

        Returns:
            bool: True if nothing is playing any more.
        """
        with self._cond:
            thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return not self.is_playing
