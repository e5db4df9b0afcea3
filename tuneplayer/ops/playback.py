"""Score cursor sync and note audition.

The cursor follows the transport: it highlights the score elements of
every sounding note and draws a vertical line at the earliest one. It
never drives time itself.
"""

from typing import Optional, Protocol

from ..state import (
    CursorOverlayState, NoteEvent, NoteRef, NoteSchedule, TransportState,
)

CURSOR_X_OFFSET = 2.0


class VisualScoreHandle(Protocol):
    """The rendered score, as seen by the cursor."""

    def element_at_offset(self, offset: int) -> Optional[NoteRef]: ...
    def element_for_event(self, index: int, event: NoteEvent) -> Optional[NoteRef]: ...
    def milliseconds_per_measure(self) -> float: ...


class ScoreOverlay(Protocol):
    """Where highlights and the cursor line are drawn."""

    def create_cursor(self) -> None: ...
    def add_highlight(self, ref: NoteRef) -> None: ...
    def remove_highlight(self, ref: NoteRef) -> None: ...
    def move_cursor(self, x1: float, y1: float, x2: float, y2: float) -> None: ...


class ScoreCursor:
    def __init__(self, score: VisualScoreHandle, overlay: ScoreOverlay, schedule: NoteSchedule):
        self.score = score
        self.overlay = overlay
        self.schedule = schedule
        self.state = CursorOverlayState()
        self._transport = None

    @property
    def running(self) -> bool:
        return self.state.visible

    def start(self):
        self.overlay.create_cursor()
        self.state.visible = True

    def update(self, position: float):
        """Highlight exactly the notes sounding at `position`."""
        refs = []
        for index, event in self.schedule.sounding_at(position):
            ref = self.score.element_for_event(index, event)
            if ref is not None and ref not in refs:
                refs.append(ref)
        current = set(refs)

        for ref in self.state.highlighted - current:
            self.overlay.remove_highlight(ref)
        for ref in refs:
            if ref not in self.state.highlighted:
                self.overlay.add_highlight(ref)
        self.state.highlighted = current

        if refs:
            first = refs[0]
            x = first.left - CURSOR_X_OFFSET
            self.state.line = (x, first.top, x, first.top + first.height)
            self.overlay.move_cursor(*self.state.line)

    def finish(self):
        for ref in self.state.highlighted:
            self.overlay.remove_highlight(ref)
        self.state.clear()
        self.overlay.move_cursor(0.0, 0.0, 0.0, 0.0)

    # -------------------------------------------------------------------
    # Transport wiring
    # -------------------------------------------------------------------

    def attach(self, transport):
        self._transport = transport
        transport.on_change(self._on_transport)

    def _on_transport(self, transport):
        if transport.state == TransportState.PLAYING:
            if not self.running:
                self.start()
            self.update(transport.position)
        elif transport.state == TransportState.PAUSED:
            if self.running:
                self.update(transport.position)
        elif self.running:
            self.finish()

    # -------------------------------------------------------------------
    # Audition
    # -------------------------------------------------------------------

    def audition(self, char_offset: int, backend) -> bool:
        """Play the note under `char_offset` for one measure's length."""
        return audition_note(self.score, backend, char_offset)


def audition_note(score: VisualScoreHandle, backend, char_offset: int) -> bool:
    """Preview a clicked note on the backend. The transport is not touched."""
    ref = score.element_at_offset(char_offset)
    if ref is None or not (ref.midi_pitches or ref.grace_pitches):
        return False
    seconds = score.milliseconds_per_measure() / 1000.0
    backend.preview(ref.midi_pitches, seconds, grace_pitches=ref.grace_pitches)
    return True
