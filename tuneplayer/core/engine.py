"""Audio rendering backends for the tune player.

Key design constraints:
- All synth calls happen on the audio thread (in the callback).
  fluidsynth.Synth is NOT thread-safe.
- The main thread only appends commands and swaps in compiled schedules.
- Schedule playback uses channel 0; note previews use channel 1 so that
  stopping or restarting the schedule never cuts an audition short.
- The transport owns position. The live backend is told where to start
  and at what rate, and never reports a position back.
"""

from __future__ import annotations

import heapq
import itertools
import math
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Protocol, Optional, Callable

import numpy as np

from ..state import NoteSchedule, MIN_TEMPO, MAX_TEMPO
from .audio import AudioBuffer
from .errors import EngineInitFailure, RenderTimeout
from .settings import Settings

SCHEDULE_CHANNEL = 0
PREVIEW_CHANNEL = 1

GRACE_SECONDS = 0.06  # grace notes sound this long before the main pitches


# ---------------------------------------------------------------------------
# Instrument protocol
# ---------------------------------------------------------------------------

class Instrument(Protocol):
    """Something that produces audio given MIDI-like events."""

    def note_on(self, pitch: int, velocity: int, channel: int = 0) -> None: ...
    def note_off(self, pitch: int, channel: int = 0) -> None: ...
    def render(self, num_frames: int) -> np.ndarray: ...  # (num_frames, 2) float32
    def all_notes_off(self, channel: int = -1) -> None: ...
    def delete(self) -> None: ...


# ---------------------------------------------------------------------------
# FluidSynth instrument
# ---------------------------------------------------------------------------

class FluidSynthInstrument:
    """Wraps pyfluidsynth for realtime synthesis.

    IMPORTANT: all methods must be called from the same thread (audio thread).
    The only exception is the constructor, which runs on the main thread before
    the audio stream starts.
    """

    def __init__(self, sf2_path: str, settings: Settings, program: int = 0):
        import fluidsynth
        self.fs = fluidsynth.Synth(samplerate=float(settings.sample_rate))
        # Tunes are monophonic, but previews overlap the schedule; keep headroom.
        self.fs.setting('synth.gain', 0.2)
        self.sfid = self.fs.sfload(sf2_path)
        if self.sfid == -1:
            raise RuntimeError(f"Could not load SoundFont {sf2_path}")
        for ch in (SCHEDULE_CHANNEL, PREVIEW_CHANNEL):
            self.fs.program_select(ch, self.sfid, 0, program)

    def note_on(self, pitch: int, velocity: int, channel: int = 0) -> None:
        self.fs.noteon(channel, pitch, velocity)

    def note_off(self, pitch: int, channel: int = 0) -> None:
        self.fs.noteoff(channel, pitch)

    def all_notes_off(self, channel: int = -1) -> None:
        """channel=-1 means every channel."""
        channels = range(16) if channel == -1 else (channel,)
        for ch in channels:
            self.fs.cc(ch, 123, 0)   # all notes off
            self.fs.cc(ch, 120, 0)   # all sound off (kills tails)

    def render(self, num_frames: int) -> np.ndarray:
        """Render num_frames of stereo audio as (num_frames, 2) float32.

        get_samples() returns interleaved int16 [L, R, L, R, ...].
        """
        raw = self.fs.get_samples(num_frames)
        audio = raw.astype(np.float32).reshape(num_frames, 2) / 32768.0
        if np.max(np.abs(audio), initial=0.0) > 0.95:
            audio = np.tanh(audio)
        return audio

    def delete(self):
        self.fs.delete()


# ---------------------------------------------------------------------------
# Sine instrument
# ---------------------------------------------------------------------------

class SineInstrument:
    """Sine-wave synth used when no SoundFont is configured."""

    def __init__(self, settings: Settings):
        self._sr = settings.sample_rate
        self._voices: dict[tuple[int, int], _SineVoice] = {}  # (channel, pitch) -> voice

    def note_on(self, pitch: int, velocity: int, channel: int = 0) -> None:
        freq = 440.0 * 2 ** ((pitch - 69) / 12.0)
        self._voices[(channel, pitch)] = _SineVoice(freq, velocity / 127.0, self._sr)

    def note_off(self, pitch: int, channel: int = 0) -> None:
        v = self._voices.get((channel, pitch))
        if v:
            v.releasing = True

    def all_notes_off(self, channel: int = -1) -> None:
        if channel == -1:
            self._voices.clear()
            return
        for key in [k for k in self._voices if k[0] == channel]:
            del self._voices[key]

    def render(self, num_frames: int) -> np.ndarray:
        out = np.zeros((num_frames, 2), dtype=np.float32)
        dead = []
        for key, v in self._voices.items():
            out += v.render(num_frames)
            if v.done:
                dead.append(key)
        for k in dead:
            del self._voices[k]
        if np.max(np.abs(out), initial=0.0) > 0.8:
            out = np.tanh(out)
        return out

    @property
    def voice_count(self) -> int:
        return len(self._voices)

    def delete(self):
        self._voices.clear()


@dataclass
class _SineVoice:
    freq: float
    amp: float
    sr: int
    phase: float = 0.0
    releasing: bool = False
    release_gain: float = 1.0
    done: bool = False

    def render(self, n: int) -> np.ndarray:
        t = np.arange(n) / self.sr
        sig = np.sin(2 * np.pi * self.freq * t + self.phase) * self.amp * 0.2
        self.phase = (self.phase + 2 * np.pi * self.freq * n / self.sr) % (2 * np.pi)

        if self.releasing:
            decay = np.exp(-np.arange(n) * 30.0 / self.sr) * self.release_gain
            sig *= decay
            self.release_gain = decay[-1] if n > 0 else 0
            if self.release_gain < 0.001:
                self.done = True

        return np.column_stack([sig, sig]).astype(np.float32)


def make_instrument(settings: Settings):
    """FluidSynth when a SoundFont is configured, otherwise sine."""
    if settings.sf2_path:
        return FluidSynthInstrument(settings.sf2_path, settings)
    return SineInstrument(settings)


# ---------------------------------------------------------------------------
# Compiled schedule
# ---------------------------------------------------------------------------

EVT_NOTE_ON = 0
EVT_NOTE_OFF = 1


@dataclass(slots=True)
class SchedEvent:
    """One note-on or note-off at a schedule time in seconds."""
    seconds: float
    event_type: int
    pitch: int
    velocity: int = 0


def compile_schedule(schedule: NoteSchedule) -> list[SchedEvent]:
    """Flatten NoteEvents into sorted on/off events.

    Note-offs sort before note-ons at the same time so a repeated pitch
    re-triggers instead of being cut by its predecessor's release.
    """
    events = []
    for e in schedule.events:
        pitch = e.midi_number
        vel = max(1, min(127, int(round(e.velocity * 127))))
        events.append(SchedEvent(e.onset_seconds, EVT_NOTE_ON, pitch, vel))
        events.append(SchedEvent(e.end_seconds, EVT_NOTE_OFF, pitch))
    _order = {EVT_NOTE_OFF: 0, EVT_NOTE_ON: 1}
    events.sort(key=lambda ev: (ev.seconds, _order[ev.event_type]))
    return events


def _first_index_at(events, seconds):
    """Index of the first event at or after `seconds`."""
    lo, hi = 0, len(events)
    while lo < hi:
        mid = (lo + hi) // 2
        if events[mid].seconds < seconds:
            lo = mid + 1
        else:
            hi = mid
    return lo


# ---------------------------------------------------------------------------
# Live backend
# ---------------------------------------------------------------------------

# Commands sent from main thread to audio thread
CMD_START = 'start'
CMD_STOP = 'stop'
CMD_RATE = 'rate'
CMD_PREVIEW = 'preview'


def _default_stream_factory(**kwargs):
    import sounddevice as sd
    return sd.OutputStream(**kwargs)


class LiveBackend:
    """Realtime playback of a NoteSchedule through the audio device.

    Threading model:
    - Main thread: render/start/stop/set_rate/preview append commands or
      swap the compiled schedule reference.
    - Audio thread: runs the callback, applies commands, dispatches events,
      drives the instrument.

    Preview note-offs are kept in a heap keyed by audio frame. They are only
    dropped by dispose().
    """

    def __init__(self, settings: Optional[Settings] = None, instrument=None,
                 stream_factory: Optional[Callable] = None):
        self.settings = settings or Settings()
        self._sr = self.settings.sample_rate
        self._block_size = self.settings.block_size
        self._instrument = instrument
        self._stream_factory = stream_factory or _default_stream_factory
        self._stream = None

        # Sequencer state (audio thread only)
        self._events: list[SchedEvent] = []
        self._idx = 0
        self._pos = 0.0        # schedule seconds
        self._rate = 1.0
        self._playing = False
        self._frame = 0        # audio clock, frames since open()
        self._previews: list[tuple] = []  # heap of (frame, is_on, seq, kind, pitch, velocity)
        self._seq = itertools.count()

        # Cross-thread communication
        self._pending_events: Optional[list[SchedEvent]] = None  # atomic swap
        self._commands: list[tuple] = []
        self._cmd_lock = threading.Lock()  # only protects command list append

    # -------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self):
        """Create the instrument and start the output stream.

        Raises EngineInitFailure when either cannot be created.
        """
        if self._stream is not None:
            return
        if self._instrument is None:
            try:
                self._instrument = make_instrument(self.settings)
            except Exception as e:
                raise EngineInitFailure(f"Could not create synthesizer: {e}") from e
        try:
            stream = self._stream_factory(
                samplerate=self._sr,
                channels=2,
                dtype='float32',
                blocksize=self._block_size,
                callback=self._audio_callback,
            )
            stream.start()
        except Exception as e:
            raise EngineInitFailure(f"Could not open audio output: {e}") from e
        self._stream = stream
        print(f"[LiveBackend] Output open at {self._sr} Hz, block {self._block_size}")

    # -------------------------------------------------------------------
    # Transport hooks (called from main thread)
    # -------------------------------------------------------------------

    def render(self, schedule: NoteSchedule, tempo: float = 1.0):
        """Arm a schedule; it takes effect on the next audio block."""
        self._pending_events = compile_schedule(schedule)
        self.set_rate(tempo)

    def start(self, position: float, rate: float = 1.0):
        """(Re)start the schedule from `position` seconds."""
        self._send_cmd(CMD_START, float(position), float(rate))

    def stop(self):
        self._send_cmd(CMD_STOP)

    def set_rate(self, rate: float):
        self._send_cmd(CMD_RATE, max(MIN_TEMPO, min(MAX_TEMPO, float(rate))))

    def preview(self, pitches, duration: float, grace_pitches=(), velocity: Optional[float] = None):
        """Play pitches once, independent of the schedule.

        Grace pitches sound briefly first. velocity is 0..1 and defaults to
        settings.preview_velocity.
        """
        if not pitches and not grace_pitches:
            return
        self.open()
        if velocity is None:
            velocity = self.settings.preview_velocity
        vel = max(1, min(127, int(round(velocity * 127))))
        self._send_cmd(CMD_PREVIEW, tuple(pitches), tuple(grace_pitches), float(duration), vel)

    # -------------------------------------------------------------------
    # Audio callback (runs on audio thread)
    # -------------------------------------------------------------------

    def _audio_callback(self, outdata, frames, time_info, status):
        """sounddevice OutputStream callback."""
        try:
            self._process_commands()
            self._check_pending_schedule()

            inst = self._instrument
            if inst is None:
                outdata[:] = 0
                return

            block_end = self._frame + frames
            self._dispatch_previews(block_end)

            if self._playing:
                end = self._pos + frames / self._sr * self._rate
                self._dispatch_events(end)
                self._pos = end

            outdata[:] = inst.render(frames)
            self._frame = block_end
        except Exception:
            # Never let exceptions escape the callback, that kills PortAudio
            outdata[:] = 0
            traceback.print_exc()

    def _process_commands(self):
        if not self._commands:
            return
        with self._cmd_lock:
            cmds = self._commands[:]
            self._commands.clear()

        inst = self._instrument
        for cmd_tuple in cmds:
            cmd = cmd_tuple[0]
            if cmd == CMD_START:
                _, pos, rate = cmd_tuple
                self._check_pending_schedule()
                if inst:
                    inst.all_notes_off(SCHEDULE_CHANNEL)
                self._pos = pos
                self._rate = rate
                self._idx = _first_index_at(self._events, pos)
                self._playing = True
            elif cmd == CMD_STOP:
                self._playing = False
                if inst:
                    inst.all_notes_off(SCHEDULE_CHANNEL)
            elif cmd == CMD_RATE:
                self._rate = cmd_tuple[1]
            elif cmd == CMD_PREVIEW:
                _, pitches, graces, duration, vel = cmd_tuple
                self._queue_preview(pitches, graces, duration, vel)

    def _check_pending_schedule(self):
        pending = self._pending_events
        if pending is not None:
            self._events = pending
            self._pending_events = None
            self._idx = _first_index_at(self._events, self._pos)

    def _dispatch_events(self, end: float):
        """Dispatch schedule events in [current position, end)."""
        events = self._events
        idx = self._idx
        inst = self._instrument
        while idx < len(events):
            evt = events[idx]
            if evt.seconds >= end:
                break
            if evt.event_type == EVT_NOTE_ON:
                inst.note_on(evt.pitch, evt.velocity, SCHEDULE_CHANNEL)
            else:
                inst.note_off(evt.pitch, SCHEDULE_CHANNEL)
            idx += 1
        self._idx = idx

    def _queue_preview(self, pitches, graces, duration, vel):
        now = self._frame
        grace_frames = int(GRACE_SECONDS * self._sr) if graces else 0
        for p in graces:
            self._push_preview(now, EVT_NOTE_ON, p, vel)
            self._push_preview(now + grace_frames, EVT_NOTE_OFF, p)
        end = now + grace_frames + max(1, int(duration * self._sr))
        for p in pitches:
            self._push_preview(now + grace_frames, EVT_NOTE_ON, p, vel)
            self._push_preview(end, EVT_NOTE_OFF, p)

    def _push_preview(self, frame, kind, pitch, vel=0):
        # Offs sort ahead of ons at the same frame.
        heapq.heappush(self._previews, (frame, kind != EVT_NOTE_OFF, next(self._seq), kind, pitch, vel))

    def _dispatch_previews(self, block_end):
        inst = self._instrument
        while self._previews and self._previews[0][0] < block_end:
            _, _, _, kind, pitch, vel = heapq.heappop(self._previews)
            if kind == EVT_NOTE_ON:
                inst.note_on(pitch, vel, PREVIEW_CHANNEL)
            else:
                inst.note_off(pitch, PREVIEW_CHANNEL)

    # -------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------

    @property
    def outstanding_handles(self) -> int:
        """Stream, instrument, queued previews and unprocessed commands."""
        return (int(self._stream is not None) + int(self._instrument is not None)
                + len(self._previews) + len(self._commands))

    def dispose(self):
        """Close the stream, delete the instrument, drop every queued handle."""
        self._playing = False
        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                print(f"[LiveBackend] Error closing stream: {e}")
            self._stream = None
        if self._instrument is not None:
            self._instrument.delete()
            self._instrument = None
        with self._cmd_lock:
            self._commands.clear()
        self._previews.clear()
        self._events = []
        self._pending_events = None

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _send_cmd(self, cmd, *args):
        """Queue a command for the audio thread."""
        with self._cmd_lock:
            self._commands.append((cmd, *args))


# ---------------------------------------------------------------------------
# Offline backend
# ---------------------------------------------------------------------------

class OfflineBackend:
    """Renders a whole schedule to an AudioBuffer faster than realtime.

    Uses a fresh instrument driven in fixed blocks, the same way the live
    callback drives its instrument, so exports sound like playback.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 instrument_factory: Optional[Callable] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.settings = settings or Settings()
        self._instrument_factory = instrument_factory or make_instrument
        self._clock = clock

    def render(self, schedule: NoteSchedule, tempo: float = 1.0) -> AudioBuffer:
        tempo = max(MIN_TEMPO, min(MAX_TEMPO, float(tempo)))
        sr = self.settings.sample_rate
        block = self.settings.block_size
        length = schedule.total_duration_seconds / tempo
        if length > self.settings.max_render_seconds:
            raise RenderTimeout(
                f"Schedule is {length:.1f}s, longer than the "
                f"{self.settings.max_render_seconds:.0f}s render limit")

        events = compile_schedule(schedule)
        total_frames = int(math.ceil(length * sr))
        output = np.zeros((total_frames, 2), dtype=np.float32)
        deadline = self._clock() + self.settings.render_timeout_seconds

        inst = self._instrument_factory(self.settings)
        try:
            pos = 0.0
            idx = 0
            frame_pos = 0
            while frame_pos < total_frames:
                n = min(block, total_frames - frame_pos)
                end = pos + n / sr * tempo
                while idx < len(events) and events[idx].seconds < end:
                    evt = events[idx]
                    if evt.event_type == EVT_NOTE_ON:
                        inst.note_on(evt.pitch, evt.velocity, SCHEDULE_CHANNEL)
                    else:
                        inst.note_off(evt.pitch, SCHEDULE_CHANNEL)
                    idx += 1
                output[frame_pos:frame_pos + n] = inst.render(n)
                pos = end
                frame_pos += n
                if self._clock() > deadline:
                    raise RenderTimeout(
                        f"Offline render exceeded {self.settings.render_timeout_seconds:.0f}s")
        finally:
            inst.delete()

        print(f"[OfflineBackend] Rendered {len(schedule)} notes, {length:.2f}s at x{tempo:g}")
        return AudioBuffer(output, sr)
