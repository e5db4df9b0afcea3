import pytest

from tuneplayer.core.engine import LiveBackend, OfflineBackend
from tuneplayer.core.midi import build_schedule
from tuneplayer.player import DISABLED, IDLE, LOADING, READY, UNMOUNTED, TunePlayer
from tuneplayer.state import TransportState

from conftest import FakeClock, FakeStream, ManualTicker, RecordingInstrument, make_midi

ABC = 'CDEF GABc|'


class Rig:
    """Builds players wired to fake audio, clock and ticker."""

    def __init__(self, settings, arbiter):
        self.settings = settings
        self.arbiter = arbiter
        self.clock = FakeClock()
        self.backends = []

    def backend(self, settings):
        b = LiveBackend(settings, instrument=RecordingInstrument(), stream_factory=FakeStream)
        self.backends.append(b)
        return b

    def player(self, generator, setting_id=2741, **kwargs):
        kwargs.setdefault('backend_factory', self.backend)
        return TunePlayer(ABC, setting_id, settings=self.settings, arbiter=self.arbiter,
                          midi_generator=generator, ticker_factory=ManualTicker,
                          clock=self.clock, **kwargs)


@pytest.fixture
def rig(settings, arbiter):
    return Rig(settings, arbiter)


def test_activation_reaches_ready(rig, two_note_midi):
    p = rig.player(lambda abc: two_note_midi)
    statuses = []
    p.on_change(lambda pl: statuses.append(pl.status))

    assert p.status == IDLE
    assert p.activate() == READY
    assert statuses[:2] == [LOADING, READY]
    assert p.canonical_midi == two_note_midi
    assert len(p.schedule) == 2
    assert p.duration == pytest.approx(1.5)
    assert p.error is None


def test_activation_happens_once(rig, two_note_midi):
    calls = []

    def gen(abc):
        calls.append(abc)
        return two_note_midi

    p = rig.player(gen)
    p.activate()
    p.activate()
    assert calls == [ABC]
    assert len(rig.backends) == 1


def test_generator_output_is_normalized(rig, two_note_midi):
    p = rig.player(lambda abc: memoryview(two_note_midi))
    assert p.activate() == READY
    assert p.canonical_midi == two_note_midi


def test_multi_version_output_uses_version_index(rig):
    first = make_midi([(0, 1, 60, 100)])
    second = make_midi([(0, 1, 67, 100), (1, 1, 69, 100)])
    p = rig.player(lambda abc: [first, second], version_index=1)
    p.activate()
    assert [e.pitch_name for e in p.schedule.events] == ['G4', 'A4']


def test_failed_activation_returns_to_idle_and_can_retry(rig, two_note_midi):
    outputs = [None, two_note_midi]
    p = rig.player(lambda abc: outputs.pop(0))

    assert p.activate() == IDLE
    assert p.error.startswith('Failed to initialize audio')
    assert p.transport is None and p.backend is None

    assert p.activate() == READY
    assert p.error is None


def test_malformed_midi_fails_activation(rig):
    p = rig.player(lambda abc: b'garbage')
    assert p.activate() == IDLE
    assert 'Failed to initialize audio' in p.error


def test_engine_failure_disables_player(rig, two_note_midi):
    def broken(settings):
        def factory(**kwargs):
            raise OSError('no device')
        return LiveBackend(settings, instrument=RecordingInstrument(), stream_factory=factory)

    p = rig.player(lambda abc: two_note_midi, backend_factory=broken)
    assert p.activate() == DISABLED
    assert p.error.startswith('Audio unavailable')
    assert p.transport is None
    p.play()  # controls stay inert
    assert p.position == 0.0


def test_controls_drive_transport(rig, two_note_midi):
    p = rig.player(lambda abc: two_note_midi)
    p.activate()
    p.play()
    assert p.transport.state == TransportState.PLAYING
    rig.clock.advance(0.5)
    assert p.position == pytest.approx(0.5)

    p.set_tempo_percent(150)
    assert p.transport.tempo == pytest.approx(1.5)
    p.toggle()
    assert p.transport.state == TransportState.PAUSED
    p.seek(1.0)
    assert p.position == pytest.approx(1.0)
    p.set_loop(True)
    assert p.transport.loop_enabled
    p.restart()
    assert p.transport.state == TransportState.STOPPED
    assert p.position == 0.0


def test_second_player_preempts_first(rig, two_note_midi):
    a = rig.player(lambda abc: two_note_midi, setting_id=1)
    b = rig.player(lambda abc: two_note_midi, setting_id=2)
    a.activate()
    b.activate()
    a.play()
    b.play()
    assert a.transport.state == TransportState.STOPPED
    assert b.transport.state == TransportState.PLAYING
    assert rig.arbiter.holder == b.instance_id


def test_unmount_releases_everything(rig, two_note_midi):
    p = rig.player(lambda abc: two_note_midi)
    p.activate()
    backend, transport = p.backend, p.transport
    p.play()
    backend.preview([72], 2.0)
    assert rig.arbiter.holder == p.instance_id

    p.unmount()
    assert rig.arbiter.holder is None
    assert not transport.ticker.active
    assert backend.outstanding_handles == 0
    assert p.transport is None and p.backend is None


def test_unmount_while_loading_releases_lock(rig, two_note_midi):
    p = rig.player(lambda abc: two_note_midi)
    assert p.begin_activation()
    assert p.status == LOADING
    assert not p.begin_activation()
    p.unmount()
    assert rig.arbiter.holder is None


def test_midi_export(rig, two_note_midi):
    p = rig.player(lambda abc: two_note_midi, version_index=0)
    p.activate()
    name, data = p.export_midi()
    assert name == 'tune-2741-v1.mid'
    assert data == two_note_midi


def test_export_failure_sets_export_error(rig, two_note_midi):
    rig.settings.max_render_seconds = 0.1
    p = rig.player(lambda abc: two_note_midi)
    p.activate()
    backend = OfflineBackend(rig.settings, instrument_factory=RecordingInstrument)
    assert p.export_wav(backend) is None
    assert p.export_error.startswith('Failed to download WAV file')
    assert p.status == READY


def test_export_before_activation(rig, two_note_midi):
    p = rig.player(lambda abc: two_note_midi)
    assert p.export_midi() is None
    assert p.export_error.startswith('Failed to download MIDI file')


def test_activation_result_after_unmount_is_dropped(rig, two_note_midi):
    p = rig.player(lambda abc: two_note_midi)
    assert p.begin_activation()
    prepared = p.prepare()  # as a worker thread would
    p.unmount()

    p.finish_activation(prepared)
    assert p.status == UNMOUNTED
    assert rig.backends == []
    assert p.transport is None and p.backend is None
    assert rig.arbiter.holder is None

    p.fail_activation(RuntimeError('late'))
    assert p.status == UNMOUNTED
    assert p.activate() == UNMOUNTED


def test_tempo_scaled_midi_export(rig, two_note_midi):
    p = rig.player(lambda abc: two_note_midi)
    p.activate()
    _, data = p.export_midi(tempo=2.0)
    assert data != two_note_midi
    assert build_schedule(data).events[1].onset_seconds == pytest.approx(0.25, abs=1e-3)
