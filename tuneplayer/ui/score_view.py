"""ABC text view that doubles as the score handle and overlay for the cursor.

Notes are located in the text with note_tokens() and lined up with the
scheduled events by playback_order(). Highlights are extra selections
over a token's characters and the cursor is a vertical line painted on
the viewport.
"""

from PySide6.QtWidgets import QPlainTextEdit, QTextEdit
from PySide6.QtCore import Qt, Signal
from PySide6.QtGui import QColor, QFont, QPainter, QPen, QTextCharFormat, QTextCursor

from ..core.notation import meter_beats, note_tokens, playback_order, sounding_pitches
from ..state import NoteRef


class AbcScoreView(QPlainTextEdit):
    """Read-only ABC view. Emits noteClicked(char_offset) on click."""

    noteClicked = Signal(int)

    def __init__(self, abc_text, parent=None):
        super().__init__(parent)
        self.setReadOnly(True)
        self.setLineWrapMode(QPlainTextEdit.NoWrap)
        font = QFont('Monospace')
        font.setStyleHint(QFont.TypeWriter)
        font.setPointSize(12)
        self.setFont(font)
        self.setPlainText(abc_text)

        self._tokens = note_tokens(abc_text)
        self._order = playback_order(abc_text)
        self._pitches = {}
        self._beats = meter_beats(abc_text)
        self._bpm = 120.0
        self._highlights: dict[NoteRef, QTextEdit.ExtraSelection] = {}
        self._cursor_line = None

        lines = max(4, abc_text.count('\n') + 2)
        self.setFixedHeight(self.fontMetrics().lineSpacing() * lines + 12)

    def set_schedule(self, schedule):
        self._bpm = schedule.bpm or 120.0
        self._pitches = sounding_pitches(self._tokens, self._order, schedule.events)
        if len(self._order) != len(schedule):
            print(f"[AbcScoreView] {len(self._order)} written notes for "
                  f"{len(schedule)} events, highlights may drift")

    # ---- VisualScoreHandle ----

    def element_at_offset(self, offset):
        for i, tok in enumerate(self._tokens):
            if tok.start <= offset < tok.end:
                return self._ref(i)
        return None

    def element_for_event(self, index, event):
        if index >= len(self._order):
            return None
        return self._ref(self._order[index])

    def milliseconds_per_measure(self):
        return self._beats * 60000.0 / self._bpm

    def _sounding(self, i):
        return self._pitches.get(i) or self._tokens[i].pitches

    def _ref(self, i):
        tok = self._tokens[i]
        start = self._rect_at(tok.start)
        end = self._rect_at(tok.end)
        return NoteRef(midi_pitches=self._sounding(i),
                       grace_pitches=tuple(p for g in tok.graces for p in self._sounding(g)),
                       left=start.left(), top=start.top(),
                       width=max(1, end.left() - start.left()), height=start.height(),
                       char_offset=tok.start)

    def _rect_at(self, offset):
        c = QTextCursor(self.document())
        c.setPosition(offset)
        return self.cursorRect(c)

    # ---- ScoreOverlay ----

    def create_cursor(self):
        self._cursor_line = (0.0, 0.0, 0.0, 0.0)
        self.viewport().update()

    def add_highlight(self, ref):
        tok_end = next((t.end for t in self._tokens if t.start == ref.char_offset), None)
        if tok_end is None:
            return
        sel = QTextEdit.ExtraSelection()
        fmt = QTextCharFormat()
        fmt.setBackground(QColor('#FF6B35'))
        fmt.setForeground(QColor('#ffffff'))
        sel.format = fmt
        c = QTextCursor(self.document())
        c.setPosition(ref.char_offset)
        c.setPosition(tok_end, QTextCursor.KeepAnchor)
        sel.cursor = c
        self._highlights[ref] = sel
        self.setExtraSelections(list(self._highlights.values()))

    def remove_highlight(self, ref):
        if self._highlights.pop(ref, None) is not None:
            self.setExtraSelections(list(self._highlights.values()))

    def move_cursor(self, x1, y1, x2, y2):
        self._cursor_line = (x1, y1, x2, y2)
        self.viewport().update()

    # ---- Qt events ----

    def paintEvent(self, event):
        super().paintEvent(event)
        line = self._cursor_line
        if line and any(line):
            p = QPainter(self.viewport())
            p.setPen(QPen(QColor('#FF6B35'), 2))
            p.drawLine(int(line[0]), int(line[1]), int(line[2]), int(line[3]))
            p.end()

    def mouseReleaseEvent(self, event):
        super().mouseReleaseEvent(event)
        if event.button() == Qt.LeftButton:
            self.noteClicked.emit(self.cursorForPosition(event.position().toPoint()).position())
