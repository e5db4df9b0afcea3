import io

import mido
import numpy as np
import pytest

from tuneplayer.core.settings import Settings
from tuneplayer.core.transport import SoundingArbiter


class ManualTicker:
    """Ticker that only fires when the test says so."""

    def __init__(self):
        self.callback = None
        self.interval_ms = None
        self.starts = 0
        self.cancels = 0

    def start(self, interval_ms, callback):
        self.interval_ms = interval_ms
        self.callback = callback
        self.starts += 1

    def cancel(self):
        if self.callback is not None:
            self.cancels += 1
        self.callback = None

    @property
    def active(self):
        return self.callback is not None

    def fire(self):
        if self.callback:
            self.callback()


class FakeClock:
    def __init__(self, t=100.0):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, dt):
        self.t += dt


class RecordingBackend:
    """Transport backend that logs start/stop/set_rate calls."""

    def __init__(self, log=None):
        self.calls = log if log is not None else []

    def start(self, position, rate):
        self.calls.append(('start', position, rate))

    def stop(self):
        self.calls.append(('stop',))

    def set_rate(self, rate):
        self.calls.append(('set_rate', rate))


class RecordingInstrument:
    def __init__(self, settings=None):
        self.events = []
        self.deleted = False

    def note_on(self, pitch, velocity, channel=0):
        self.events.append(('on', pitch, velocity, channel))

    def note_off(self, pitch, channel=0):
        self.events.append(('off', pitch, channel))

    def all_notes_off(self, channel=-1):
        self.events.append(('all_off', channel))

    def render(self, num_frames):
        return np.full((num_frames, 2), 0.25, dtype=np.float32)

    def delete(self):
        self.deleted = True

    def ons(self, channel=None):
        return [e[1] for e in self.events
                if e[0] == 'on' and (channel is None or e[3] == channel)]

    def offs(self, channel=None):
        return [e[1] for e in self.events
                if e[0] == 'off' and (channel is None or e[2] == channel)]


class FakeStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs['callback']
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def pull(self, frames):
        """Run one audio callback and return the block."""
        out = np.zeros((frames, 2), dtype=np.float32)
        self.callback(out, frames, None, None)
        return out


def make_midi(notes, tempo=500000, ticks_per_beat=480, channel=0):
    """MIDI bytes for [(start_beat, dur_beat, pitch, velocity), ...] on one track."""
    mid = mido.MidiFile(ticks_per_beat=ticks_per_beat)
    track = mido.MidiTrack()
    track.append(mido.MetaMessage('set_tempo', tempo=tempo, time=0))
    evs = []
    for start, dur, pitch, vel in notes:
        evs.append((int(start * ticks_per_beat), 1, 'note_on', pitch, vel))
        evs.append((int((start + dur) * ticks_per_beat), 0, 'note_off', pitch, 0))
    evs.sort(key=lambda e: (e[0], e[1]))
    last = 0
    for tick, _, kind, pitch, vel in evs:
        track.append(mido.Message(kind, note=pitch, velocity=vel, channel=channel,
                                  time=tick - last))
        last = tick
    mid.tracks.append(track)
    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


@pytest.fixture
def settings(tmp_path):
    s = Settings(tmp_path / 'settings.json')
    s.sample_rate = 8000
    s.block_size = 100
    s.favorites_path = str(tmp_path / 'favorites.json')
    return s


@pytest.fixture
def arbiter():
    return SoundingArbiter()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def two_note_midi():
    # C4 then E4, half a second each at 120 BPM
    return make_midi([(0, 1, 60, 100), (1, 1, 64, 100)])
