"""Data model shared by the schedule builder, transport and cursor.

Schedules are immutable: a tempo or source change derives a new one
rather than editing events in place.
"""

from __future__ import annotations

import enum
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Optional


NOTE_NAMES = ['C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B']

# Flats resolve to the sharp spelling when parsing names.
_FLATS = {'Db': 'C#', 'Eb': 'D#', 'Gb': 'F#', 'Ab': 'G#', 'Bb': 'A#'}

TAIL_SECONDS = 0.5

MIN_TEMPO = 0.5
MAX_TEMPO = 2.0


def midi_to_name(pitch):
    """MIDI note number to scientific pitch name (60 -> 'C4')."""
    pitch = int(pitch)
    return f'{NOTE_NAMES[pitch % 12]}{pitch // 12 - 1}'


def name_to_midi(name):
    """Scientific pitch name to MIDI note number ('C4' -> 60)."""
    i = 2 if len(name) > 2 and name[1] in '#b' else 1
    letter, octave = name[:i], name[i:]
    letter = _FLATS.get(letter, letter)
    if letter not in NOTE_NAMES:
        raise ValueError(f"Bad pitch name: {name!r}")
    return NOTE_NAMES.index(letter) + (int(octave) + 1) * 12


class TransportState(enum.Enum):
    STOPPED = 'stopped'
    PLAYING = 'playing'
    PAUSED = 'paused'


@dataclass(frozen=True, slots=True)
class NoteEvent:
    """One scheduled sound. Times are seconds at the authored tempo."""
    onset_seconds: float
    pitch_name: str
    duration_seconds: float
    velocity: float = 0.8  # 0..1

    @property
    def end_seconds(self) -> float:
        return self.onset_seconds + self.duration_seconds

    @property
    def midi_number(self) -> int:
        return name_to_midi(self.pitch_name)


@dataclass(frozen=True)
class NoteSchedule:
    events: tuple = ()
    total_duration_seconds: float = TAIL_SECONDS
    bpm: float = 120.0

    @staticmethod
    def from_events(events, bpm=120.0):
        """Stable-sort events by onset and derive the padded duration."""
        ordered = tuple(sorted(events, key=lambda e: e.onset_seconds))
        end = max((e.end_seconds for e in ordered), default=0.0)
        return NoteSchedule(events=ordered,
                            total_duration_seconds=end + TAIL_SECONDS,
                            bpm=bpm)

    def __len__(self):
        return len(self.events)

    def sounding_at(self, position):
        """(index, event) pairs with onset <= position < onset + duration."""
        # Events are sorted by onset, so only the prefix can be sounding.
        onsets = [e.onset_seconds for e in self.events]
        upto = bisect_right(onsets, position)
        return [(i, e) for i, e in enumerate(self.events[:upto])
                if position < e.end_seconds]


@dataclass(frozen=True)
class NoteRef:
    """A note element of the rendered score, with its glyph bounds.

    Identity is the pitches and source offset; the bounds move when the
    view scrolls and are not compared.
    """
    midi_pitches: tuple = ()
    grace_pitches: tuple = ()
    left: float = field(default=0.0, compare=False)
    top: float = field(default=0.0, compare=False)
    width: float = field(default=0.0, compare=False)
    height: float = field(default=0.0, compare=False)
    char_offset: Optional[int] = None


@dataclass
class CursorOverlayState:
    highlighted: set = field(default_factory=set)
    line: tuple = (0.0, 0.0, 0.0, 0.0)  # x1, y1, x2, y2
    visible: bool = False

    def clear(self):
        self.highlighted.clear()
        self.line = (0.0, 0.0, 0.0, 0.0)
        self.visible = False
