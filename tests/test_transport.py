import pytest

from tuneplayer.core.transport import SoundingArbiter, Transport
from tuneplayer.state import NoteEvent, NoteSchedule, TransportState

from conftest import FakeClock, ManualTicker, RecordingBackend

STOPPED = TransportState.STOPPED
PLAYING = TransportState.PLAYING
PAUSED = TransportState.PAUSED


def make_transport(arbiter, clock, total=2.5, instance_id='a', backend=None):
    return Transport(total, arbiter=arbiter, instance_id=instance_id,
                     backend=backend if backend is not None else RecordingBackend(),
                     ticker=ManualTicker(), clock=clock, tick_interval_ms=30)


def test_two_note_scenario(arbiter, clock):
    schedule = NoteSchedule.from_events([NoteEvent(0.0, 'C4', 1.0), NoteEvent(1.0, 'E4', 1.0)])
    assert schedule.total_duration_seconds == pytest.approx(2.5)

    t = make_transport(arbiter, clock, schedule.total_duration_seconds)
    t.play()
    assert t.state == PLAYING
    assert t.ticker.active and t.ticker.interval_ms == 30

    positions = []
    for _ in range(5):
        clock.advance(0.1)
        t.tick()
        positions.append(t.position)
    assert positions == sorted(positions)
    assert positions[-1] == pytest.approx(0.5)

    t.seek(1.0)
    assert t.state == PLAYING
    assert t.position == pytest.approx(1.0)
    assert arbiter.holder == 'a'

    t.stop()
    assert t.state == STOPPED
    assert t.position == 0.0
    assert arbiter.holder is None
    assert not t.ticker.active


def test_pause_on_stopped_is_noop(arbiter, clock):
    t = make_transport(arbiter, clock)
    t.pause()
    assert t.state == STOPPED
    assert t.position == 0.0
    assert t.backend.calls == []


def test_play_twice_does_not_double_start(arbiter, clock):
    t = make_transport(arbiter, clock)
    t.play()
    clock.advance(0.3)
    t.play()
    assert t.ticker.starts == 1
    assert [c for c in t.backend.calls if c[0] == 'start'] == [('start', 0.0, 1.0)]
    assert t.position == pytest.approx(0.3)


def test_pause_freezes_and_resume_continues(arbiter, clock):
    t = make_transport(arbiter, clock)
    t.play()
    clock.advance(0.4)
    t.pause()
    assert t.state == PAUSED
    assert not t.ticker.active
    clock.advance(5.0)
    assert t.position == pytest.approx(0.4)

    t.play()
    assert t.backend.calls[-1] == ('start', pytest.approx(0.4), 1.0)
    clock.advance(0.1)
    assert t.position == pytest.approx(0.5)
    assert arbiter.holder == 'a'


def test_seek_clamps_and_moves_only_when_paused(arbiter, clock):
    t = make_transport(arbiter, clock)
    t.seek(1.0)  # STOPPED: ignored
    assert t.position == 0.0

    t.play()
    t.pause()
    calls = len(t.backend.calls)
    t.seek(10.0)
    assert t.position == pytest.approx(2.5)
    t.seek(-3)
    assert t.position == 0.0
    assert len(t.backend.calls) == calls
    assert t.state == PAUSED


def test_seek_while_playing_restarts_backend_without_stopping(arbiter, clock):
    t = make_transport(arbiter, clock)
    t.play()
    ticker_starts = t.ticker.starts
    t.seek(1.25)
    assert t.backend.calls[-1] == ('start', 1.25, 1.0)
    assert ('stop',) not in t.backend.calls
    assert t.ticker.starts == ticker_starts and t.ticker.active


def test_tempo_scales_clock_not_schedule(arbiter, clock):
    t = make_transport(arbiter, clock)
    t.play()
    clock.advance(0.5)
    t.set_tempo(2.0)
    assert t.position == pytest.approx(0.5)
    assert t.backend.calls[-1] == ('set_rate', 2.0)
    clock.advance(0.25)
    assert t.position == pytest.approx(1.0)
    assert t.total_duration == pytest.approx(2.5)


def test_tempo_is_clamped(arbiter, clock):
    t = make_transport(arbiter, clock)
    t.set_tempo(200)
    assert t.tempo == 2.0
    t.set_tempo(0.1)
    assert t.tempo == 0.5


def test_natural_end_stops(arbiter, clock):
    t = make_transport(arbiter, clock, total=1.0)
    t.play()
    clock.advance(1.2)
    t.tick()
    assert t.state == STOPPED
    assert t.position == 0.0
    assert not t.ticker.active
    assert arbiter.holder is None


def test_loop_restarts_from_zero(arbiter, clock):
    t = make_transport(arbiter, clock, total=1.0)
    t.set_loop(True)
    t.play()
    clock.advance(1.05)
    t.tick()
    assert t.state == PLAYING
    assert t.position == 0.0
    assert t.loop_count == 1
    assert t.backend.calls[-1] == ('start', 0.0, 1.0)
    clock.advance(0.2)
    assert t.position == pytest.approx(0.2)


def test_single_sounding_instance(arbiter, clock):
    a = make_transport(arbiter, clock, instance_id='a')
    b = make_transport(arbiter, clock, instance_id='b')
    seen = []

    def check(_):
        seen.append((a.state, b.state))

    a.on_change(check)
    b.on_change(check)

    a.play()
    clock.advance(0.3)
    b.play()
    assert a.state == STOPPED and a.position == 0.0
    assert b.state == PLAYING
    assert arbiter.holder == 'b'
    assert not a.ticker.active
    assert (PLAYING, PLAYING) not in seen


def test_arbiter_returns_previous_holder():
    arb = SoundingArbiter()
    preempted = []
    arb.register('a', lambda: preempted.append('a'))
    arb.register('b', lambda: preempted.append('b'))
    assert arb.try_acquire('a') is None
    assert arb.try_acquire('a') is None
    assert arb.try_acquire('b') == 'a'
    assert preempted == ['a']
    arb.release('a')
    assert arb.holder == 'b'
    arb.release('b')
    assert arb.holder is None


def test_observers_see_transitions(arbiter, clock):
    t = make_transport(arbiter, clock)
    states = []
    t.on_change(lambda tr: states.append(tr.state))
    t.play()
    t.pause()
    t.stop()
    assert states == [PLAYING, PAUSED, STOPPED]


def test_dispose_cancels_everything_in_order(arbiter):
    log = []

    class LoggingTicker(ManualTicker):
        def cancel(self):
            log.append('cancel')
            super().cancel()

    class LoggingArbiter(SoundingArbiter):
        def release(self, instance_id):
            if self.holder == instance_id:
                log.append('release')
            super().release(instance_id)

    arb = LoggingArbiter()
    t = Transport(2.0, arbiter=arb, instance_id='a', backend=RecordingBackend(log),
                  ticker=LoggingTicker(), clock=FakeClock())
    t.play()
    del log[:]
    t.dispose()
    assert log == [('stop',), 'release', 'cancel']
    assert arb.holder is None
    assert not t.ticker.active

    t.play()  # disposed transports stay silent
    assert t.state == STOPPED


def test_position_keeps_advancing_after_seek_while_playing(arbiter, clock):
    t = make_transport(arbiter, clock)
    t.play()
    clock.advance(0.3)
    t.seek(1.0)
    assert t.position == pytest.approx(1.0)
    clock.advance(0.2)
    assert t.position == pytest.approx(1.2)
    t.pause()
    assert t.position == pytest.approx(1.2)
