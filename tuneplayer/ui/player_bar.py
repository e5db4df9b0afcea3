"""Per-tune player controls - activation, transport, tempo, loop and downloads."""

import threading
from pathlib import Path

from PySide6.QtWidgets import (QFrame, QLabel, QPushButton, QSlider, QHBoxLayout,
                                QVBoxLayout, QFileDialog)
from PySide6.QtCore import Qt, Signal

from ..core.errors import MalformedMidi, NormalizeError
from ..ops.export import write_export
from ..player import DISABLED, IDLE, LOADING, READY
from ..state import TransportState

SLIDER_STEPS_PER_SECOND = 100


def format_time(seconds):
    """M:SS.cc"""
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    cs = int((seconds % 1) * 100)
    return f'{mins}:{secs:02d}.{cs:02d}'


class PlayerBar(QFrame):
    """Controls for one TunePlayer. Activation and WAV export run on worker threads."""

    _prepared = Signal(object)
    _prepare_failed = Signal(object)
    _exported = Signal(object)

    def __init__(self, player, parent=None):
        super().__init__(parent)
        self.player = player
        self._seeking = False
        self._build()
        self._prepared.connect(self._on_prepared)
        self._prepare_failed.connect(self._on_prepare_failed)
        self._exported.connect(self._save_export)
        self.player.on_change(lambda _p: self.refresh())
        self.refresh()

    def _build(self):
        outer = QVBoxLayout(self)
        outer.setContentsMargins(4, 4, 4, 4)
        outer.setSpacing(4)

        # Activation row
        self.activate_btn = QPushButton('Activate Audio')
        self.activate_btn.clicked.connect(self.activate)
        outer.addWidget(self.activate_btn)

        # Transport row
        row = QHBoxLayout()
        self.play_btn = QPushButton('▶')
        self.play_btn.setMaximumWidth(40)
        self.play_btn.clicked.connect(self.player.toggle)
        row.addWidget(self.play_btn)

        self.restart_btn = QPushButton('⏮')
        self.restart_btn.setMaximumWidth(40)
        self.restart_btn.setToolTip('Stop and rewind')
        self.restart_btn.clicked.connect(self.player.restart)
        row.addWidget(self.restart_btn)

        self.seek_slider = QSlider(Qt.Horizontal)
        self.seek_slider.sliderPressed.connect(self._on_seek_pressed)
        self.seek_slider.sliderReleased.connect(self._on_seek_released)
        row.addWidget(self.seek_slider, 1)

        self.time_label = QLabel(format_time(0))
        row.addWidget(self.time_label)
        outer.addLayout(row)

        # Tempo / loop / download row
        row2 = QHBoxLayout()
        self.tempo_label = QLabel('Tempo: 100%')
        row2.addWidget(self.tempo_label)
        self.tempo_slider = QSlider(Qt.Horizontal)
        self.tempo_slider.setRange(50, 200)
        self.tempo_slider.setValue(100)
        self.tempo_slider.setMaximumWidth(160)
        self.tempo_slider.valueChanged.connect(self._on_tempo)
        row2.addWidget(self.tempo_slider)

        self.loop_btn = QPushButton('Loop')
        self.loop_btn.setCheckable(True)
        self.loop_btn.toggled.connect(self.player.set_loop)
        row2.addWidget(self.loop_btn)

        row2.addStretch()

        self.midi_btn = QPushButton('MIDI')
        self.midi_btn.clicked.connect(self.download_midi)
        row2.addWidget(self.midi_btn)

        self.wav_btn = QPushButton('WAV')
        self.wav_btn.clicked.connect(self.download_wav)
        row2.addWidget(self.wav_btn)
        outer.addLayout(row2)

        self.error_label = QLabel('')
        self.error_label.setStyleSheet('color: #ff6b6b;')
        self.error_label.setWordWrap(True)
        outer.addWidget(self.error_label)

        self._controls = [self.play_btn, self.restart_btn, self.seek_slider,
                          self.tempo_slider, self.loop_btn, self.midi_btn, self.wav_btn]

    # -------------------------------------------------------------------
    # Activation
    # -------------------------------------------------------------------

    def activate(self):
        if not self.player.begin_activation():
            return

        def work():
            try:
                prepared = self.player.prepare()
            except (NormalizeError, MalformedMidi) as e:
                self._prepare_failed.emit(e)
                return
            self._prepared.emit(prepared)

        threading.Thread(target=work, daemon=True).start()

    # Slots on the bar so the worker's emit is queued onto the UI thread
    def _on_prepared(self, prepared):
        self.player.finish_activation(prepared)

    def _on_prepare_failed(self, exc):
        self.player.fail_activation(exc)

    # -------------------------------------------------------------------
    # Refresh from player state
    # -------------------------------------------------------------------

    def refresh(self):
        p = self.player
        ready = p.status == READY

        self.activate_btn.setVisible(not ready)
        self.activate_btn.setEnabled(p.status == IDLE)
        self.activate_btn.setText('Loading Audio...' if p.status == LOADING else 'Activate Audio')
        if p.status == DISABLED:
            self.activate_btn.setText('Audio unavailable')
        for w in self._controls:
            w.setVisible(ready)

        error = p.export_error or p.error
        self.error_label.setText(error or '')
        self.error_label.setVisible(bool(error))

        if not ready or p.transport is None:
            return

        playing = p.transport.state == TransportState.PLAYING
        self.play_btn.setText('⏸' if playing else '▶')
        self.seek_slider.setRange(0, int(p.duration * SLIDER_STEPS_PER_SECOND))
        if not self._seeking:
            self.seek_slider.setValue(int(p.position * SLIDER_STEPS_PER_SECOND))
        self.time_label.setText(f'{format_time(p.position)} / {format_time(p.duration)}')

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------

    def _on_seek_pressed(self):
        self._seeking = True

    def _on_seek_released(self):
        self._seeking = False
        self.player.seek(self.seek_slider.value() / SLIDER_STEPS_PER_SECOND)

    def _on_tempo(self, value):
        self.tempo_label.setText(f'Tempo: {value}%')
        self.player.set_tempo_percent(value)

    def download_midi(self):
        result = self.player.export_midi()
        if result:
            self._save_export(result)
        else:
            self.refresh()

    def download_wav(self):
        self.wav_btn.setEnabled(False)

        def work():
            self._exported.emit(self.player.export_wav())

        threading.Thread(target=work, daemon=True).start()

    def _save_export(self, result):
        self.wav_btn.setEnabled(True)
        if not result:
            self.refresh()
            return
        filename, data = result
        path, _ = QFileDialog.getSaveFileName(
            self, 'Save download', str(Path.home() / filename), 'All files (*.*)')
        if path:
            try:
                write_export(Path(path).parent, Path(path).name, data)
            except OSError as e:
                self.player.export_error = f'Could not save {filename}: {e}'
                self.refresh()
