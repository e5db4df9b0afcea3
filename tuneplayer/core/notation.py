"""ABC notation helpers: complete headers, MIDI generation and note tokens.

abc_to_midi_output() is the MIDI generator the normalizer sits behind.
It returns bytes for one tune and a list of bytes when the text holds
several X: tunes. note_tokens() locates the notes in the tune body and
playback_order() lines them up with the MIDI events, so a text score
view can map character offsets to schedule events and back.
"""

import re
from dataclasses import dataclass

from .errors import NormalizeError


def build_complete_abc(setting) -> str:
    """Prefix a catalogue setting's ABC body with the header it needs to parse.

    setting is a catalogue row: 'setting_id' (or 'id'), 'mode' (or 'key')
    such as 'Gmajor' / 'Edorian' / 'Aminor', and the 'abc' body.
    """
    sid = setting.get('setting_id') or setting.get('id') or 1
    key = setting.get('mode') or setting.get('key') or 'C'
    key = key.replace('major', '').replace('minor', 'm')
    return f"X:{sid}\nM:4/4\nL:1/8\nK:{key}\n{setting.get('abc', '')}"


def _score_to_midi(score) -> bytes:
    from music21 import exceptions21, midi
    try:
        score = score.expandRepeats()
    except exceptions21.Music21Exception as e:
        print(f"[notation] Repeats left unexpanded: {e}")
    mf = midi.translate.streamToMidiFile(score)
    return mf.writestr()


def abc_to_midi_output(abc_text: str):
    """Parse ABC with music21 and write MIDI with repeats played out.

    Returns bytes for a single tune, or one bytes entry per tune when the
    text parses to an Opus. Parse failures raise NormalizeError.
    """
    from music21 import converter, stream

    try:
        parsed = converter.parse(abc_text, format='abc')
        if isinstance(parsed, stream.Opus):
            scores = list(parsed.scores)
            print(f"[notation] ABC holds {len(scores)} tunes")
            return [_score_to_midi(s) for s in scores]
        return _score_to_midi(parsed)
    except Exception as e:
        raise NormalizeError(f"Could not convert ABC to MIDI: {e}") from e


# ---------------------------------------------------------------------------
# Note tokens
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NoteToken:
    """One written note, chord or grace note of the tune body.

    A chord sounds one MIDI event per pitch; a note that continues a tie
    sounds none, the tied-from note already holds through it.
    """
    start: int            # character offset in the full ABC text
    end: int
    pitches: tuple        # MIDI numbers, explicit accidentals only
    grace: bool = False
    tied: bool = False
    graces: tuple = ()    # indices of the grace tokens leading into this one

    @property
    def pitch(self) -> int:
        return self.pitches[0]

    @property
    def event_count(self) -> int:
        return 0 if self.tied else len(self.pitches)


_SKIP = r'"[^"]*"|![^!]*!|\+[^+]*\+|\[[A-Za-z]:[^\]]*\]|%[^\n]*'
_NOTE = r"(?P<acc>\^\^|\^|__|_|=)?(?P<letter>[A-Ga-g])(?P<oct>[,']*)"
_CHORD = r"\[(?P<chord>(?:[_^=]*[A-Ga-g][,']*[0-9/]*-?\s*)+)\]"
_BAR = r'(?P<bar>(?P<body>::|:*\[?\|+\]?:*)(?:\s?\[?(?P<end1>[1-9]))?|\[(?P<end2>[1-9]))'
_TOKEN_RE = re.compile(rf'(?P<skip>{_SKIP})|(?P<grace>\{{[^}}]*\}})|{_CHORD}|{_BAR}|{_NOTE}')
_NOTE_RE = re.compile(_NOTE)
_TIE_RE = re.compile(r'[0-9/]*-')
_HEADER_RE = re.compile(r'^[A-Za-z]:')

_BASE = {'C': 60, 'D': 62, 'E': 64, 'F': 65, 'G': 67, 'A': 69, 'B': 71}
_ACC = {'^': 1, '^^': 2, '_': -1, '__': -2, '=': 0, None: 0}

# Repeat structure markers
_NOTE_MARK = 'note'
_START = 'start'
_END = 'end'
_ENDING = 'ending'


def abc_pitch(letter, accidental=None, octave_marks=''):
    """MIDI number of one ABC note: C = 60, c = 72, ' and , shift octaves."""
    pitch = _BASE[letter.upper()] + (12 if letter.islower() else 0)
    pitch += 12 * octave_marks.count("'") - 12 * octave_marks.count(',')
    return pitch + _ACC[accidental]


def _pitch_of(m):
    return abc_pitch(m.group('letter'), m.group('acc'), m.group('oct'))


def _bar_marks(m):
    body = m.group('body') or ''
    marks = []
    if body.startswith(':'):
        marks.append((_END,))
    if body.endswith(':'):
        marks.append((_START,))
    ending = m.group('end1') or m.group('end2')
    if ending:
        marks.append((_ENDING, int(ending)))
    return marks


def _scan(abc_text):
    """Tokens of the tune body plus the note/repeat marks in written order."""
    tokens = []
    marks = []
    offset = 0
    tie = False
    for line in abc_text.splitlines(keepends=True):
        if _HEADER_RE.match(line):
            offset += len(line)
            continue
        graces = ()
        for m in _TOKEN_RE.finditer(line):
            if m.group('skip'):
                continue
            if m.group('grace') is not None:
                idxs = []
                for g in _NOTE_RE.finditer(line, m.start() + 1, m.end() - 1):
                    idxs.append(len(tokens))
                    marks.append((_NOTE_MARK, len(tokens)))
                    tokens.append(NoteToken(offset + g.start(), offset + g.end(),
                                            (_pitch_of(g),), grace=True))
                graces = tuple(idxs)
                continue
            if m.group('bar') is not None:
                marks.extend(_bar_marks(m))
                continue
            if m.group('chord') is not None:
                pitches = tuple(_pitch_of(n) for n in _NOTE_RE.finditer(m.group('chord')))
            else:
                pitches = (_pitch_of(m),)
            marks.append((_NOTE_MARK, len(tokens)))
            tokens.append(NoteToken(offset + m.start(), offset + m.end(), pitches,
                                    tied=tie, graces=graces))
            tie = _TIE_RE.match(line, m.end()) is not None
            graces = ()
        offset += len(line)
    return tokens, marks


def _expand(marks):
    """Token indices in playing order, each |: ... :| section played twice.

    A :| with no |: before it repeats from the start of the tune or from
    the previous :|. On the second time through, a first ending [1 is
    skipped up to its :|.
    """
    order = []
    start, second, done = 0, False, set()
    i = 0
    while i < len(marks):
        kind = marks[i][0]
        if kind == _NOTE_MARK:
            order.append(marks[i][1])
        elif kind == _START:
            start, second = i + 1, False
        elif kind == _END:
            if i not in done:
                done.add(i)
                i, second = start, True
                continue
            start, second = i + 1, False
        elif kind == _ENDING and second and marks[i][1] == 1:
            j = next((k for k in range(i + 1, len(marks)) if marks[k][0] == _END), None)
            if j is not None:
                i, start, second = j + 1, j + 1, False
                continue
        i += 1
    return order


def note_tokens(abc_text: str) -> list[NoteToken]:
    """Notes, chords and grace notes of the tune body in written order."""
    return _scan(abc_text)[0]


def playback_order(abc_text: str) -> list[int]:
    """Token index of each MIDI event the tune produces, in playing order.

    Follows the same rules the MIDI writer does: repeats are played out,
    grace notes sound on their own, chords sound every pitch and tie
    continuations sound nothing.
    """
    tokens, marks = _scan(abc_text)
    order = []
    for t in _expand(marks):
        order.extend([t] * tokens[t].event_count)
    return order


def sounding_pitches(tokens, order, events) -> dict:
    """Pitches each token sounds, read off the events of its first playing.

    These carry the key signature, which the written pitches do not.
    """
    runs = {}
    for j, t in enumerate(order[:len(events)]):
        run = runs.setdefault(t, [])
        if len(run) < tokens[t].event_count and (not run or run[-1] == j - 1):
            run.append(j)
    return {t: tuple(events[j].midi_number for j in run) for t, run in runs.items()}


def meter_beats(abc_text: str) -> float:
    """Quarter-note beats per measure from the M: field (4/4 when absent)."""
    m = re.search(r'^M:\s*(\d+)\s*/\s*(\d+)', abc_text, re.MULTILINE)
    if m:
        return int(m.group(1)) * 4.0 / int(m.group(2))
    return 4.0  # also covers M:C and M:C|
