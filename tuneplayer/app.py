"""Main window - tune search, favorites, and one player per tune setting."""

import re
from pathlib import Path

from PySide6.QtWidgets import (QMainWindow, QWidget, QFrame, QVBoxLayout, QHBoxLayout,
                                QSplitter, QLineEdit, QListWidget, QListWidgetItem,
                                QLabel, QPushButton, QScrollArea)
from PySide6.QtCore import Qt
from PySide6.QtGui import QFont

from .core.errors import NotFound
from .core.notation import build_complete_abc
from .core.settings import Settings
from .core.transport import SoundingArbiter
from .player import TunePlayer, READY
from .services.catalogue import TuneCatalogue
from .services.favorites import FavoritesStore
from .ui.player_bar import PlayerBar
from .ui.score_view import AbcScoreView

LOCAL_USER = 'local'


def split_tunes(abc_text):
    """Split a multi-tune ABC file at its X: lines."""
    parts = re.split(r'(?m)^(?=X:)', abc_text)
    return [p for p in parts if p.strip().startswith('X:')] or [abc_text]


class SettingPanel(QFrame):
    """Score view and player bar for one setting."""

    def __init__(self, player, abc_display, parent=None, on_move_up=None):
        super().__init__(parent)
        self.player = player
        self.setFrameShape(QFrame.StyledPanel)
        layout = QVBoxLayout(self)
        layout.setContentsMargins(6, 6, 6, 6)

        header = QHBoxLayout()
        title = QLabel(f'Setting {player.setting_id}')
        font = QFont()
        font.setBold(True)
        title.setFont(font)
        header.addWidget(title)
        header.addStretch()
        if on_move_up:
            up_btn = QPushButton('▲')
            up_btn.setMaximumWidth(30)
            up_btn.setToolTip('Move this version up')
            up_btn.clicked.connect(on_move_up)
            header.addWidget(up_btn)
        layout.addLayout(header)

        self.score = AbcScoreView(abc_display)
        self.score.noteClicked.connect(self.player.audition)
        layout.addWidget(self.score)

        self.bar = PlayerBar(player)
        layout.addWidget(self.bar)

        player.attach_score(self.score, self.score)
        player.on_change(self._on_player)

    def _on_player(self, player):
        if player.status == READY and player.schedule is not None:
            self.score.set_schedule(player.schedule)

    def unmount(self):
        self.player.unmount()


class App(QMainWindow):
    """Main application - owns the catalogue, favorites and the open players."""

    def __init__(self, settings=None, catalogue_path=None, abc_path=None):
        super().__init__()
        self.settings = settings or Settings()
        self.arbiter = SoundingArbiter()
        self.favorites = FavoritesStore(self.settings.favorites_path)
        self.catalogue = TuneCatalogue()
        self._tune_id = None
        self._settings_rows = []
        self._panels: list[SettingPanel] = []

        self.setWindowTitle('Tune Player')
        self.resize(1100, 750)
        self._build_ui()

        path = catalogue_path or self.settings.catalogue_path
        if path:
            try:
                self.catalogue = TuneCatalogue.load(path)
            except OSError as e:
                self.status_label.setText(f'Could not load catalogue: {e}')
        else:
            self.status_label.setText('No catalogue configured (--catalogue FILE)')
        self._refresh_favorites()

        if abc_path:
            self.open_abc_file(abc_path)

    def _build_ui(self):
        splitter = QSplitter(Qt.Horizontal)

        # Sidebar
        side = QWidget()
        side_layout = QVBoxLayout(side)
        self.search_edit = QLineEdit()
        self.search_edit.setPlaceholderText('Search tunes...')
        self.search_edit.returnPressed.connect(self.do_search)
        side_layout.addWidget(self.search_edit)
        self.results_list = QListWidget()
        self.results_list.itemActivated.connect(self._on_tune_item)
        side_layout.addWidget(self.results_list, 2)
        side_layout.addWidget(QLabel('Favorites'))
        self.favorites_list = QListWidget()
        self.favorites_list.itemActivated.connect(self._on_tune_item)
        side_layout.addWidget(self.favorites_list, 1)
        self.status_label = QLabel('')
        self.status_label.setWordWrap(True)
        side_layout.addWidget(self.status_label)
        splitter.addWidget(side)

        # Tune pane
        pane = QWidget()
        pane_layout = QVBoxLayout(pane)
        top = QHBoxLayout()
        self.title_label = QLabel('')
        font = QFont()
        font.setPointSize(14)
        font.setBold(True)
        self.title_label.setFont(font)
        top.addWidget(self.title_label)
        top.addStretch()
        self.fav_btn = QPushButton('☆ Favorite')
        self.fav_btn.setCheckable(True)
        self.fav_btn.setVisible(False)
        self.fav_btn.clicked.connect(self.toggle_favorite)
        top.addWidget(self.fav_btn)
        pane_layout.addLayout(top)

        self.scroll = QScrollArea()
        self.scroll.setWidgetResizable(True)
        self.panel_host = QWidget()
        self.panel_layout = QVBoxLayout(self.panel_host)
        self.panel_layout.addStretch()
        self.scroll.setWidget(self.panel_host)
        pane_layout.addWidget(self.scroll)
        splitter.addWidget(pane)

        splitter.setSizes([280, 820])
        self.setCentralWidget(splitter)

    # -------------------------------------------------------------------
    # Search / favorites
    # -------------------------------------------------------------------

    def do_search(self):
        self.results_list.clear()
        for row in self.catalogue.search(self.search_edit.text().strip()):
            item = QListWidgetItem(f"{row.get('name', '')}  ({row.get('type', '')})")
            item.setData(Qt.UserRole, row.get('tune_id'))
            self.results_list.addItem(item)
        self.status_label.setText(f'{self.results_list.count()} tunes')

    def _refresh_favorites(self):
        self.favorites_list.clear()
        for tune_id in self.favorites.get_favorites(LOCAL_USER):
            try:
                name = self.catalogue.lookup_by_id(tune_id)[0].get('name', tune_id)
            except NotFound:
                name = f'Tune {tune_id}'
            item = QListWidgetItem(name)
            item.setData(Qt.UserRole, tune_id)
            self.favorites_list.addItem(item)

    def toggle_favorite(self):
        if self._tune_id is None:
            return
        if self.fav_btn.isChecked():
            self.favorites.add_favorite(LOCAL_USER, self._tune_id)
        else:
            self.favorites.remove_favorite(LOCAL_USER, self._tune_id)
        self._update_fav_btn()
        self._refresh_favorites()

    def _update_fav_btn(self):
        fav = self._tune_id in self.favorites.get_favorites(LOCAL_USER)
        self.fav_btn.setChecked(fav)
        self.fav_btn.setText('★ Favorite' if fav else '☆ Favorite')

    # -------------------------------------------------------------------
    # Opening tunes
    # -------------------------------------------------------------------

    def _on_tune_item(self, item):
        self.open_tune(item.data(Qt.UserRole))

    def open_tune(self, tune_id):
        try:
            rows = self.catalogue.lookup_by_id(tune_id)
        except NotFound as e:
            self.status_label.setText(str(e))
            return
        self._tune_id = str(tune_id)
        self._settings_rows = self.favorites.ordered_settings(LOCAL_USER, self._tune_id, rows)
        self.title_label.setText(rows[0].get('name', ''))
        self.fav_btn.setVisible(True)
        self._update_fav_btn()
        self._show_settings()

    def _show_settings(self):
        self._clear_panels()
        for i, row in enumerate(self._settings_rows):
            abc = build_complete_abc(row)
            player = TunePlayer(abc, row.get('setting_id') or row.get('id'),
                                settings=self.settings, arbiter=self.arbiter)
            move_up = (lambda _=False, idx=i: self.move_setting_up(idx)) if i > 0 else None
            self._add_panel(SettingPanel(player, abc, on_move_up=move_up))

    def move_setting_up(self, index):
        rows = self._settings_rows
        rows[index - 1], rows[index] = rows[index], rows[index - 1]
        self.favorites.save_preferences(
            LOCAL_USER, self._tune_id, [r.get('setting_id') for r in rows])
        self._show_settings()

    def open_abc_file(self, path):
        """Open a local ABC file; each X: tune becomes one version."""
        with open(path, encoding='utf-8') as f:
            text = f.read()
        self._tune_id = None
        self.fav_btn.setVisible(False)
        self.title_label.setText(str(path))
        self._clear_panels()
        tunes = split_tunes(text)
        multi = len(tunes) > 1
        for i, section in enumerate(tunes):
            player = TunePlayer(text, Path(path).stem, version_index=i if multi else None,
                                settings=self.settings, arbiter=self.arbiter)
            self._add_panel(SettingPanel(player, section))

    def _add_panel(self, panel):
        self._panels.append(panel)
        self.panel_layout.insertWidget(self.panel_layout.count() - 1, panel)

    def _clear_panels(self):
        for panel in self._panels:
            panel.unmount()
            panel.setParent(None)
            panel.deleteLater()
        self._panels = []

    def closeEvent(self, event):
        self._clear_panels()
        super().closeEvent(event)
