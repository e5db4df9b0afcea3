"""MIDI bytes <-> NoteSchedule.

build_schedule() flattens every track of a MIDI file into one list of
(onset, pitch, duration, velocity) events in seconds. schedule_to_midi()
goes the other way for exports that must reflect a derived schedule.
"""

from __future__ import annotations

import io
from bisect import bisect_right
from collections import defaultdict, deque

import mido

from ..state import NoteEvent, NoteSchedule, midi_to_name
from .errors import MalformedMidi

DEFAULT_TEMPO = 500000  # us per quarter note, 120 BPM


class _TempoMap:
    """Converts absolute ticks to seconds across tempo changes."""

    def __init__(self, changes, ticks_per_beat):
        self.tpb = ticks_per_beat
        changes = sorted(changes, key=lambda c: c[0])
        if not changes or changes[0][0] > 0:
            changes.insert(0, (0, DEFAULT_TEMPO))
        self._ticks = []
        self._tempos = []
        self._seconds = []
        elapsed = 0.0
        prev_tick, prev_tempo = 0, changes[0][1]
        for tick, tempo in changes:
            elapsed += mido.tick2second(tick - prev_tick, self.tpb, prev_tempo)
            self._ticks.append(tick)
            self._tempos.append(tempo)
            self._seconds.append(elapsed)
            prev_tick, prev_tempo = tick, tempo

    @property
    def first_tempo(self):
        return self._tempos[0]

    def seconds(self, tick):
        i = bisect_right(self._ticks, tick) - 1
        return self._seconds[i] + mido.tick2second(
            tick - self._ticks[i], self.tpb, self._tempos[i])


def _parse(midi_bytes):
    try:
        return mido.MidiFile(file=io.BytesIO(bytes(midi_bytes)))
    except Exception as e:
        raise MalformedMidi(f"Could not parse MIDI data: {e}") from e


def _track_notes(track):
    """Note-on/off pairs of one track as [start_tick, end_tick, pitch, vel].

    Pairs are matched first-in first-out per (channel, pitch); notes still
    held at the end of the track end on its last tick.
    """
    notes = []
    held = defaultdict(deque)
    tick = 0
    for msg in track:
        tick += msg.time
        if msg.type == 'note_on' and msg.velocity > 0:
            note = [tick, None, msg.note, msg.velocity]
            notes.append(note)
            held[(msg.channel, msg.note)].append(note)
        elif msg.type in ('note_off', 'note_on'):
            queue = held.get((msg.channel, msg.note))
            if queue:
                queue.popleft()[1] = tick
    for note in notes:
        if note[1] is None:
            note[1] = tick
    return notes


def build_schedule(midi_bytes) -> NoteSchedule:
    """Parse MIDI bytes into a time-ordered NoteSchedule.

    Raises MalformedMidi when the bytes are not a MIDI file.
    """
    mid = _parse(midi_bytes)

    changes = []
    for track in mid.tracks:
        tick = 0
        for msg in track:
            tick += msg.time
            if msg.type == 'set_tempo':
                changes.append((tick, msg.tempo))
    tempo_map = _TempoMap(changes, mid.ticks_per_beat)

    events = []
    for track in mid.tracks:
        for start, end, pitch, vel in _track_notes(track):
            onset = tempo_map.seconds(start)
            events.append(NoteEvent(
                onset_seconds=onset,
                pitch_name=midi_to_name(pitch),
                duration_seconds=max(0.0, tempo_map.seconds(end) - onset),
                velocity=vel / 127.0,
            ))

    return NoteSchedule.from_events(events, bpm=mido.tempo2bpm(tempo_map.first_tempo))


def schedule_to_midi(schedule: NoteSchedule, ticks_per_beat=480, tempo_multiplier=1.0) -> bytes:
    """Write a schedule as a single-track MIDI file.

    tempo_multiplier scales the written tempo, not the note ticks, so the
    file plays back faster or slower in any MIDI player.
    """
    bpm = schedule.bpm * tempo_multiplier
    tempo = mido.bpm2tempo(bpm)
    authored = mido.bpm2tempo(schedule.bpm)

    mid = mido.MidiFile(ticks_per_beat=ticks_per_beat)
    track = mido.MidiTrack()
    track.append(mido.MetaMessage('set_tempo', tempo=tempo, time=0))

    evs = []
    for e in schedule.events:
        on = int(round(mido.second2tick(e.onset_seconds, ticks_per_beat, authored)))
        off = int(round(mido.second2tick(e.end_seconds, ticks_per_beat, authored)))
        vel = max(1, min(127, int(round(e.velocity * 127))))
        evs.append((on, 1, 'note_on', e.midi_number, vel))
        evs.append((off, 0, 'note_off', e.midi_number, 0))
    # Off before on at the same tick
    evs.sort(key=lambda x: (x[0], x[1]))

    last = 0
    for tick, _, kind, pitch, vel in evs:
        track.append(mido.Message(kind, note=pitch, velocity=vel, time=tick - last))
        last = tick
    track.append(mido.MetaMessage('end_of_track', time=0))
    mid.tracks.append(track)

    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()
