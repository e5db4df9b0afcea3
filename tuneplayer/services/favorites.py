"""Favorites and per-tune version ordering, kept in one JSON file.

Layout:
    {"favorites": {user_id: {category: [tune_id, ...]}},
     "tunePreferences": {"<user_id>_<tune_id>": {...}}}

Writes go straight to disk. Read failures leave the store empty; write
failures are reported by returning False.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

DEFAULT_CATEGORY = 'hatao'


class FavoritesStore:
    def __init__(self, path):
        self.path = Path(path).expanduser()
        self._data = {'favorites': {}, 'tunePreferences': {}}
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path) as f:
                d = json.load(f)
            self._data['favorites'] = dict(d.get('favorites', {}))
            self._data['tunePreferences'] = dict(d.get('tunePreferences', {}))
        except (OSError, ValueError) as e:
            print(f"[FavoritesStore] Ignoring unreadable {self.path}: {e}")

    def _save(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                json.dump(self._data, f, indent=2)
            return True
        except OSError as e:
            print(f"[FavoritesStore] Could not write {self.path}: {e}")
            return False

    # ---- Favorites ----

    def get_favorites(self, user_id, category=DEFAULT_CATEGORY):
        return list(self._data['favorites'].get(user_id, {}).get(category, []))

    def add_favorite(self, user_id, tune_id, category=DEFAULT_CATEGORY) -> bool:
        ids = self._data['favorites'].setdefault(user_id, {}).setdefault(category, [])
        if tune_id not in ids:
            ids.append(tune_id)
        return self._save()

    def remove_favorite(self, user_id, tune_id, category=DEFAULT_CATEGORY) -> bool:
        ids = self._data['favorites'].setdefault(user_id, {}).setdefault(category, [])
        ids[:] = [t for t in ids if t != tune_id]
        return self._save()

    # ---- Tune preferences ----

    def get_preferences(self, user_id, tune_id):
        prefs = self._data['tunePreferences'].get(f'{user_id}_{tune_id}')
        if prefs is None:
            return {'versionOrder': []}
        return dict(prefs)

    def save_preferences(self, user_id, tune_id, version_order) -> bool:
        self._data['tunePreferences'][f'{user_id}_{tune_id}'] = {
            'userId': user_id,
            'tuneId': tune_id,
            'versionOrder': list(version_order),
            'updatedAt': datetime.now(timezone.utc).isoformat(),
        }
        return self._save()

    def ordered_settings(self, user_id, tune_id, settings, key='setting_id'):
        """Settings rearranged by the saved versionOrder; unknown ids keep their place at the end."""
        order = self.get_preferences(user_id, tune_id)['versionOrder']
        rank = {sid: i for i, sid in enumerate(order)}
        return sorted(settings, key=lambda s: rank.get(s.get(key), len(rank)))
