"""Transport state machine - play/pause/stop/seek/loop/tempo for one player.

The transport is the only authority on playback position. Position is
derived from the clock:

    position = anchor_position + (clock() - anchor_time) * tempo

and is never read back from the audio engine. Engines that can only
start and stop (no true pause) are restarted from the retained position
on resume and seek.

Transitions that are not legal in the current state are ignored, so UI
code may call them redundantly. Everything runs on the UI thread; the
repeating tick task is an explicit handle cancelled on every exit path.
"""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

from ..state import TransportState, MIN_TEMPO, MAX_TEMPO

STOPPED = TransportState.STOPPED
PLAYING = TransportState.PLAYING
PAUSED = TransportState.PAUSED


def _clamp(v, lo, hi):
    return max(lo, min(hi, v))


# ---------------------------------------------------------------------------
# Sounding-instance arbitration
# ---------------------------------------------------------------------------

class SoundingArbiter:
    """Grants the single process-wide 'sounding' slot to one instance.

    Acquiring the slot while another instance holds it calls that
    instance's preempt callback first, so the previous holder is already
    stopped when try_acquire() returns.
    """

    def __init__(self):
        self._holder = None
        self._preempt: dict = {}

    @property
    def holder(self):
        return self._holder

    def register(self, instance_id, on_preempt: Callable[[], None]):
        self._preempt[instance_id] = on_preempt

    def unregister(self, instance_id):
        self._preempt.pop(instance_id, None)
        self.release(instance_id)

    def try_acquire(self, instance_id):
        """Take the slot. Returns the preempted holder id, or None."""
        prev = self._holder
        if prev == instance_id:
            return None
        if prev is not None:
            self._holder = None
            on_preempt = self._preempt.get(prev)
            if on_preempt:
                on_preempt()
        self._holder = instance_id
        return prev

    def release(self, instance_id):
        if self._holder == instance_id:
            self._holder = None


default_arbiter = SoundingArbiter()


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class Transport:
    """Playback clock and state for one player instance.

    backend, when given, must provide start(position, rate), stop() and
    set_rate(rate). ticker must provide start(interval_ms, callback),
    cancel() and active.
    """

    def __init__(self, total_duration: float, *, arbiter: Optional[SoundingArbiter] = None,
                 instance_id=None, backend=None, ticker=None,
                 clock: Callable[[], float] = time.monotonic, tick_interval_ms: int = 30):
        if ticker is None:
            from .ticker import QtTicker
            ticker = QtTicker()
        self.instance_id = instance_id if instance_id is not None else uuid.uuid4().hex
        self.arbiter = arbiter if arbiter is not None else default_arbiter
        self.backend = backend
        self.ticker = ticker
        self.clock = clock
        self.tick_interval_ms = tick_interval_ms

        self.total_duration = float(total_duration)
        self.state = STOPPED
        self.tempo = 1.0
        self.loop_enabled = False
        self.loop_count = 0

        self._position = 0.0
        self._anchor_time = 0.0
        self._anchor_position = 0.0
        self._listeners: list[Callable] = []
        self._disposed = False

        self.arbiter.register(self.instance_id, self._preempted)

    # -------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------

    def on_change(self, callback: Callable):
        """callback(transport) after every transition and tick."""
        self._listeners.append(callback)

    def notify(self):
        for cb in list(self._listeners):
            cb(self)

    # -------------------------------------------------------------------
    # Clock
    # -------------------------------------------------------------------

    @property
    def position(self) -> float:
        if self.state == PLAYING:
            return min(self._clock_position(), self.total_duration)
        return self._position

    @property
    def is_playing(self) -> bool:
        return self.state == PLAYING

    @property
    def holds_sounding_lock(self) -> bool:
        return self.arbiter.holder == self.instance_id

    def _clock_position(self):
        return self._anchor_position + (self.clock() - self._anchor_time) * self.tempo

    def _anchor(self, position):
        self._anchor_position = position
        self._anchor_time = self.clock()

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------

    def play(self):
        """STOPPED/PAUSED -> PLAYING from the retained position."""
        if self._disposed or self.state == PLAYING:
            return
        self.arbiter.try_acquire(self.instance_id)
        self._anchor(self._position)
        self.state = PLAYING
        if self.backend:
            self.backend.start(self._position, self.tempo)
        self.ticker.start(self.tick_interval_ms, self.tick)
        self.notify()

    def pause(self):
        """PLAYING -> PAUSED, keeping the position."""
        if self.state != PLAYING:
            return
        self._position = self.position
        self.state = PAUSED
        self.ticker.cancel()
        if self.backend:
            self.backend.stop()
        self.notify()

    def stop(self):
        """PLAYING/PAUSED -> STOPPED at position 0."""
        if self.state == STOPPED:
            return
        self._halt()
        self.arbiter.release(self.instance_id)
        self.notify()

    def toggle(self):
        if self.state == PLAYING:
            self.pause()
        else:
            self.play()

    def seek(self, seconds: float):
        """Move the position while PLAYING or PAUSED.

        While playing, the clock is moved and re-anchored and the
        backend restarts its schedule from the new position. The tick task
        and the sounding lock are left alone, and nothing else the backend
        has queued (note previews) is cancelled.
        """
        if self.state == STOPPED:
            return
        target = _clamp(float(seconds), 0.0, self.total_duration)
        if self.state == PLAYING:
            self._position = target
            self._anchor(target)
            if self.backend:
                self.backend.start(target, self.tempo)
        else:
            self._position = target
        self.notify()

    def set_tempo(self, multiplier: float):
        """Scale the clock rate. Schedule timestamps are unaffected."""
        multiplier = _clamp(float(multiplier), MIN_TEMPO, MAX_TEMPO)
        if self.state == PLAYING:
            self._position = self.position
            self._anchor(self._position)
        self.tempo = multiplier
        if self.state == PLAYING and self.backend:
            self.backend.set_rate(multiplier)
        self.notify()

    def set_loop(self, enabled: bool):
        self.loop_enabled = bool(enabled)
        self.notify()

    def tick(self):
        """Advance from the clock; handles the end of the schedule."""
        if self.state != PLAYING:
            self.ticker.cancel()
            return
        pos = self._clock_position()
        if pos >= self.total_duration:
            if self.loop_enabled:
                self.loop_count += 1
                self._position = 0.0
                self._anchor(0.0)
                if self.backend:
                    self.backend.start(0.0, self.tempo)
            else:
                self._halt()
                self.arbiter.release(self.instance_id)
        else:
            self._position = pos
        self.notify()

    # -------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------

    def _halt(self):
        self.state = STOPPED
        self._position = 0.0
        self.ticker.cancel()
        if self.backend:
            self.backend.stop()

    def _preempted(self):
        """Another instance took the sounding slot."""
        if self.state == STOPPED:
            return
        print(f"[Transport] {self.instance_id} preempted")
        self._halt()
        self.notify()

    def dispose(self):
        """Stop the engine, release the lock, then cancel the tick task."""
        if self._disposed:
            return
        was_stopped = self.state == STOPPED
        self.state = STOPPED
        self._position = 0.0
        if self.backend:
            self.backend.stop()
        self.arbiter.unregister(self.instance_id)
        self.ticker.cancel()
        self._disposed = True
        if not was_stopped:
            self.notify()
        self._listeners.clear()
