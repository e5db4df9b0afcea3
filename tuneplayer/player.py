"""Per-tune player controller.

Owns everything one tune instance needs once audio is activated: the
canonical MIDI buffer, the note schedule, the live backend, the transport
and the score cursor. Activation is split so the slow half (MIDI
generation, normalization, schedule building) can run on a worker thread:

    prepared = player.prepare()        # any thread
    player.finish_activation(prepared)  # UI thread

activate() does both on the calling thread.
"""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

from .core.engine import LiveBackend
from .core.errors import EngineInitFailure, MalformedMidi, NormalizeError, TunePlayerError
from .core.midi import build_schedule
from .core.normalize import normalize
from .core.notation import abc_to_midi_output
from .core.settings import Settings
from .core.transport import Transport, default_arbiter
from .ops import export
from .ops.playback import ScoreCursor, audition_note

IDLE = 'idle'
LOADING = 'loading'
READY = 'ready'
DISABLED = 'disabled'
UNMOUNTED = 'unmounted'


class TunePlayer:
    def __init__(self, abc_text: str, setting_id, *, version_index: Optional[int] = None,
                 settings: Optional[Settings] = None, arbiter=None,
                 midi_generator: Callable = abc_to_midi_output,
                 backend_factory: Optional[Callable] = None,
                 ticker_factory: Optional[Callable] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.abc_text = abc_text
        self.setting_id = setting_id
        self.version_index = version_index
        self.settings = settings or Settings()
        self.arbiter = arbiter if arbiter is not None else default_arbiter
        self.instance_id = f'{setting_id}-{uuid.uuid4().hex[:8]}'

        self._midi_generator = midi_generator
        self._backend_factory = backend_factory or LiveBackend
        self._ticker_factory = ticker_factory
        self._clock = clock

        self.status = IDLE
        self.error: Optional[str] = None
        self.export_error: Optional[str] = None
        self.canonical_midi: Optional[bytes] = None
        self.schedule = None
        self.backend = None
        self.transport: Optional[Transport] = None
        self.cursor: Optional[ScoreCursor] = None

        self._score = None
        self._overlay = None
        self._exporting = False
        self._listeners: list[Callable] = []

    # -------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------

    def on_change(self, callback: Callable):
        """callback(player) on status changes and every transport change."""
        self._listeners.append(callback)

    def notify(self, *_):
        for cb in list(self._listeners):
            cb(self)

    def _set_status(self, status):
        self.status = status
        self.notify()

    # -------------------------------------------------------------------
    # Activation
    # -------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.status == READY

    def prepare(self):
        """Generate, normalize and parse MIDI. Safe off the UI thread."""
        raw = self._midi_generator(self.abc_text)
        canonical = normalize(raw, self.version_index or 0)
        schedule = build_schedule(canonical)
        print(f"[TunePlayer] {self.setting_id}: {len(schedule)} notes, "
              f"{schedule.total_duration_seconds:.2f}s")
        return canonical, schedule

    def begin_activation(self) -> bool:
        """Move to LOADING. False when activation is not allowed now."""
        if self.status != IDLE:
            return False
        self.error = None
        self._set_status(LOADING)
        return True

    def activate(self):
        if not self.begin_activation():
            return self.status
        try:
            prepared = self.prepare()
        except (NormalizeError, MalformedMidi) as e:
            self.fail_activation(e)
            return self.status
        self.finish_activation(prepared)
        return self.status

    def fail_activation(self, exc):
        """Back to IDLE with nothing partial kept; activation may be retried."""
        if self.status != LOADING:
            return
        print(f"[TunePlayer] Activation failed: {exc}")
        self.error = f"Failed to initialize audio: {exc}"
        self._set_status(IDLE)

    def finish_activation(self, prepared):
        """Open the engine and build the transport. Ignored unless LOADING."""
        if self.status != LOADING:
            print(f"[TunePlayer] {self.setting_id}: dropping activation result ({self.status})")
            return
        canonical, schedule = prepared
        backend = self._backend_factory(self.settings)
        try:
            backend.open()
        except EngineInitFailure as e:
            print(f"[TunePlayer] Audio engine unavailable: {e}")
            backend.dispose()
            self.error = f"Audio unavailable: {e}"
            self._set_status(DISABLED)
            return
        backend.render(schedule, 1.0)

        kwargs = {}
        if self._ticker_factory is not None:
            kwargs['ticker'] = self._ticker_factory()
        transport = Transport(schedule.total_duration_seconds, arbiter=self.arbiter,
                              instance_id=self.instance_id, backend=backend,
                              clock=self._clock,
                              tick_interval_ms=self.settings.tick_interval_ms, **kwargs)
        transport.on_change(self.notify)

        self.canonical_midi = canonical
        self.schedule = schedule
        self.backend = backend
        self.transport = transport
        if self._score is not None:
            self._make_cursor()
        self._set_status(READY)

    # -------------------------------------------------------------------
    # Score
    # -------------------------------------------------------------------

    def attach_score(self, score, overlay):
        """Connect a rendered score; the cursor is built once audio is ready."""
        self._score = score
        self._overlay = overlay
        if self.transport is not None:
            self._make_cursor()

    def _make_cursor(self):
        self.cursor = ScoreCursor(self._score, self._overlay, self.schedule)
        self.cursor.attach(self.transport)

    def audition(self, char_offset: int) -> bool:
        """Play the note under a click. Needs activated audio."""
        if self.backend is None or self._score is None:
            return False
        return audition_note(self._score, self.backend, char_offset)

    # -------------------------------------------------------------------
    # Transport controls
    # -------------------------------------------------------------------

    @property
    def position(self) -> float:
        return self.transport.position if self.transport else 0.0

    @property
    def duration(self) -> float:
        return self.schedule.total_duration_seconds if self.schedule else 0.0

    def play(self):
        if self.transport:
            self.transport.play()

    def pause(self):
        if self.transport:
            self.transport.pause()

    def toggle(self):
        if self.transport:
            self.transport.toggle()

    def restart(self):
        """Stop and rewind to the start."""
        if self.transport:
            self.transport.stop()

    def seek(self, seconds: float):
        if self.transport:
            self.transport.seek(seconds)

    def set_tempo_percent(self, percent: float):
        if self.transport:
            self.transport.set_tempo(percent / 100.0)

    def set_loop(self, enabled: bool):
        if self.transport:
            self.transport.set_loop(enabled)

    # -------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------

    def export_midi(self, tempo=1.0):
        """(filename, bytes), or None with export_error set."""
        return self._export(lambda p: export.export_midi(p, tempo), 'MIDI')

    def export_wav(self, backend=None):
        """(filename, bytes), or None with export_error set.

        May be called from a worker thread; it only reads the schedule.
        """
        return self._export(lambda p: export.export_wav(p, backend), 'WAV')

    def _export(self, fn, label):
        if self._exporting:
            return None
        self._exporting = True
        self.export_error = None
        try:
            return fn(self)
        except (TunePlayerError, OSError) as e:
            print(f"[TunePlayer] {label} export failed: {e}")
            self.export_error = f"Failed to download {label} file: {e}"
            return None
        finally:
            self._exporting = False

    # -------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------

    def unmount(self):
        """Stop the backend, release the lock, cancel the tick, free the engine.

        The player is unusable afterwards; a worker still preparing it
        finds it UNMOUNTED and creates nothing.
        """
        self.status = UNMOUNTED
        if self.transport is not None:
            self.transport.dispose()
        else:
            self.arbiter.release(self.instance_id)
        if self.backend is not None:
            self.backend.dispose()
        self.transport = None
        self.backend = None
        self.cursor = None
        self._listeners.clear()
