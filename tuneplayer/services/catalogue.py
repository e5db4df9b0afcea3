"""Tune settings catalogue loaded from a CSV dump of The Session.

Rows carry tune_id, setting_id, name, type, meter, mode, abc (and more
columns that are kept but unused). Every value is a string.
"""

import csv
from pathlib import Path

from ..core.errors import NotFound


class TuneCatalogue:
    def __init__(self, rows=None):
        self.rows: list[dict] = list(rows or [])

    @classmethod
    def load(cls, path):
        """Read the CSV; blank lines are skipped."""
        with open(Path(path).expanduser(), newline='', encoding='utf-8') as f:
            rows = [r for r in csv.DictReader(f) if any((v or '').strip() for v in r.values())]
        print(f"[TuneCatalogue] Loaded {len(rows)} settings from {path}")
        return cls(rows)

    def __len__(self):
        return len(self.rows)

    def search(self, query):
        """Case-insensitive name match, first setting per tune_id."""
        if not query:
            return []
        q = query.lower()
        seen = {}
        for row in self.rows:
            if q in row.get('name', '').lower() and row.get('tune_id') not in seen:
                seen[row.get('tune_id')] = row
        return list(seen.values())

    def lookup_by_id(self, tune_id):
        """Every setting of one tune. Raises NotFound."""
        tid = str(tune_id)
        settings = [r for r in self.rows if r.get('tune_id') == tid]
        if not settings:
            raise NotFound(f"Tune with ID {tune_id} not found")
        return settings
