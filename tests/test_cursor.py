import pytest

from tuneplayer.core.transport import Transport
from tuneplayer.ops.playback import ScoreCursor, audition_note
from tuneplayer.state import NoteEvent, NoteRef, NoteSchedule

from conftest import FakeClock, ManualTicker, RecordingBackend


class FakeScore:
    """One glyph per scheduled note, laid out left to right."""

    def __init__(self, schedule, ms_per_measure=2000.0):
        self.refs = [NoteRef(midi_pitches=(e.midi_number,), left=10.0 + 20 * i, top=5.0,
                             width=8.0, height=30.0, char_offset=i * 3)
                     for i, e in enumerate(schedule.events)]
        self.ms = ms_per_measure

    def element_at_offset(self, offset):
        for ref in self.refs:
            if ref.char_offset <= offset < ref.char_offset + 3:
                return ref
        return None

    def element_for_event(self, index, event):
        return self.refs[index] if index < len(self.refs) else None

    def milliseconds_per_measure(self):
        return self.ms


class FakeOverlay:
    def __init__(self):
        self.cursors = 0
        self.highlighted = set()
        self.log = []
        self.line = None

    def create_cursor(self):
        self.cursors += 1

    def add_highlight(self, ref):
        self.log.append(('add', ref.char_offset))
        self.highlighted.add(ref)

    def remove_highlight(self, ref):
        self.log.append(('remove', ref.char_offset))
        self.highlighted.discard(ref)

    def move_cursor(self, x1, y1, x2, y2):
        self.line = (x1, y1, x2, y2)


class PreviewRecorder:
    def __init__(self):
        self.previews = []

    def preview(self, pitches, duration, grace_pitches=()):
        self.previews.append((tuple(pitches), duration, tuple(grace_pitches)))


@pytest.fixture
def schedule():
    return NoteSchedule.from_events([
        NoteEvent(0.0, 'C4', 1.0),
        NoteEvent(0.5, 'E4', 1.0),
        NoteEvent(2.0, 'G4', 0.5),
    ])


def test_update_highlights_exactly_the_sounding_set(schedule):
    score, overlay = FakeScore(schedule), FakeOverlay()
    cursor = ScoreCursor(score, overlay, schedule)
    cursor.start()
    assert overlay.cursors == 1

    cursor.update(0.25)
    assert overlay.highlighted == {score.refs[0]}
    assert overlay.line == (8.0, 5.0, 8.0, 35.0)

    cursor.update(0.75)
    assert overlay.highlighted == {score.refs[0], score.refs[1]}

    cursor.update(1.25)
    assert overlay.highlighted == {score.refs[1]}
    assert overlay.line == (28.0, 5.0, 28.0, 35.0)


def test_stale_highlights_removed_before_new_added(schedule):
    score, overlay = FakeScore(schedule), FakeOverlay()
    cursor = ScoreCursor(score, overlay, schedule)
    cursor.start()
    cursor.update(1.25)
    overlay.log.clear()
    cursor.update(2.1)
    assert overlay.log == [('remove', 3), ('add', 6)]


def test_gap_keeps_cursor_where_it_was(schedule):
    score, overlay = FakeScore(schedule), FakeOverlay()
    cursor = ScoreCursor(score, overlay, schedule)
    cursor.start()
    cursor.update(1.25)
    cursor.update(1.75)
    assert overlay.highlighted == set()
    assert overlay.line == (28.0, 5.0, 28.0, 35.0)


def test_finish_clears_everything(schedule):
    score, overlay = FakeScore(schedule), FakeOverlay()
    cursor = ScoreCursor(score, overlay, schedule)
    cursor.start()
    cursor.update(0.75)
    cursor.finish()
    assert overlay.highlighted == set()
    assert overlay.line == (0.0, 0.0, 0.0, 0.0)
    assert not cursor.running
    assert cursor.state.highlighted == set()


def test_follows_transport(schedule, arbiter):
    clock = FakeClock()
    transport = Transport(schedule.total_duration_seconds, instance_id='t',
                          arbiter=arbiter, backend=RecordingBackend(),
                          ticker=ManualTicker(), clock=clock)
    score, overlay = FakeScore(schedule), FakeOverlay()
    cursor = ScoreCursor(score, overlay, schedule)
    cursor.attach(transport)

    transport.play()
    assert cursor.running
    assert overlay.highlighted == {score.refs[0]}

    clock.advance(0.75)
    transport.tick()
    assert overlay.highlighted == {score.refs[0], score.refs[1]}

    transport.pause()
    assert cursor.running

    transport.stop()
    assert not cursor.running
    assert overlay.highlighted == set()
    assert overlay.line == (0.0, 0.0, 0.0, 0.0)
    transport.dispose()


def test_audition_plays_one_measure_without_touching_transport(schedule):
    score = FakeScore(schedule, ms_per_measure=1500.0)
    backend = PreviewRecorder()
    assert audition_note(score, backend, 4) is True
    assert backend.previews == [((64,), 1.5, ())]


def test_audition_of_empty_spot(schedule):
    backend = PreviewRecorder()
    assert audition_note(FakeScore(schedule), backend, 99) is False
    assert backend.previews == []


def test_audition_includes_grace_pitches(schedule):
    score = FakeScore(schedule)
    score.refs[0] = NoteRef(midi_pitches=(60,), grace_pitches=(62,), char_offset=0)
    backend = PreviewRecorder()
    cursor = ScoreCursor(score, FakeOverlay(), schedule)
    assert cursor.audition(1, backend)
    assert backend.previews == [((60,), 2.0, (62,))]
