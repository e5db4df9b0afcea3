"""Export operations - MIDI and WAV downloads for one player."""

from pathlib import Path

from ..core.audio import encode_midi, encode_wav, export_filename
from ..core.engine import OfflineBackend
from ..core.errors import TunePlayerError
from ..core.midi import schedule_to_midi


def _require_ready(player):
    if player.canonical_midi is None or player.schedule is None:
        raise TunePlayerError("Audio is not activated for this tune")


def export_midi(player, tempo=1.0):
    """Return (filename, bytes) of the canonical MIDI buffer.

    Any other tempo rewrites the schedule into a new file whose written
    tempo is scaled by `tempo`.
    """
    _require_ready(player)
    name = export_filename(player.setting_id, 'mid', player.version_index)
    if tempo == 1.0:
        return name, encode_midi(player.canonical_midi)
    return name, schedule_to_midi(player.schedule, tempo_multiplier=tempo)


def export_wav(player, backend=None, tempo=1.0):
    """Render the schedule offline and return (filename, WAV bytes).

    Renders at the authored tempo unless `tempo` says otherwise; the
    player's live tempo is not applied.
    """
    _require_ready(player)
    backend = backend or OfflineBackend(player.settings)
    buf = backend.render(player.schedule, tempo)
    name = export_filename(player.setting_id, 'wav', player.version_index)
    return name, encode_wav(buf)


def write_export(directory, filename, data) -> Path:
    """Write export bytes into `directory`, creating it if needed."""
    path = Path(directory).expanduser() / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    print(f"[export] Wrote {len(data)} bytes to {path}")
    return path
