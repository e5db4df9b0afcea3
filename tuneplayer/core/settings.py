"""User-facing settings - persisted to ~/.config/tuneplayer/settings.json.

Covers the audio engines (sample rate, block size, SoundFont), the
transport tick rate, offline render bounds and where the catalogue and
favorites live.

Hard-coded values that are plausible candidates to move here in the future:
  - Trailing tail buffer appended to schedules (currently 0.5s)
  - Tempo range (currently 50%..200%)
  - Cursor x offset from the note glyph (currently 2px)
"""

import json
from pathlib import Path

CONFIG_DIR = Path.home() / '.config' / 'tuneplayer'
CONFIG_PATH = CONFIG_DIR / 'settings.json'

DEFAULTS = {
    'audio_block_size': 512,
    'sample_rate': 44100,
    'sf2_path': '',               # empty string = sine instrument
    'tick_interval_ms': 30,       # transport/cursor refresh period
    'preview_velocity': 0.8,      # 0..1, note audition loudness
    'render_timeout_seconds': 60.0,
    'max_render_seconds': 1800.0,
    'catalogue_path': '',         # CSV dump of tune settings
    'favorites_path': str(CONFIG_DIR / 'favorites.json'),
}


class Settings:
    def __init__(self, path=None):
        self.path = Path(path) if path else CONFIG_PATH
        self.block_size: int = DEFAULTS['audio_block_size']
        self.sample_rate: int = DEFAULTS['sample_rate']
        self.sf2_path: str = DEFAULTS['sf2_path']
        self.tick_interval_ms: int = DEFAULTS['tick_interval_ms']
        self.preview_velocity: float = DEFAULTS['preview_velocity']
        self.render_timeout_seconds: float = DEFAULTS['render_timeout_seconds']
        self.max_render_seconds: float = DEFAULTS['max_render_seconds']
        self.catalogue_path: str = DEFAULTS['catalogue_path']
        self.favorites_path: str = DEFAULTS['favorites_path']
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path) as f:
                d = json.load(f)
            self.block_size = int(d.get('audio_block_size', self.block_size))
            self.sample_rate = int(d.get('sample_rate', self.sample_rate))
            self.sf2_path = str(d.get('sf2_path', self.sf2_path))
            self.tick_interval_ms = int(d.get('tick_interval_ms', self.tick_interval_ms))
            self.preview_velocity = float(d.get('preview_velocity', self.preview_velocity))
            self.render_timeout_seconds = float(
                d.get('render_timeout_seconds', self.render_timeout_seconds))
            self.max_render_seconds = float(d.get('max_render_seconds', self.max_render_seconds))
            self.catalogue_path = str(d.get('catalogue_path', self.catalogue_path))
            self.favorites_path = str(d.get('favorites_path', self.favorites_path))
        except Exception as e:
            print(f"[Settings] Ignoring unreadable {self.path}: {e}")

    def to_dict(self):
        return {
            'audio_block_size': self.block_size,
            'sample_rate': self.sample_rate,
            'sf2_path': self.sf2_path,
            'tick_interval_ms': self.tick_interval_ms,
            'preview_velocity': self.preview_velocity,
            'render_timeout_seconds': self.render_timeout_seconds,
            'max_render_seconds': self.max_render_seconds,
            'catalogue_path': self.catalogue_path,
            'favorites_path': self.favorites_path,
        }

    def save(self):
        """Persist current settings to the user config file."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as e:
            print(f"[Settings] Could not write {self.path}: {e}")
