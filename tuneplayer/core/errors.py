"""Error taxonomy for activation, playback engines and export.

Transport transitions never raise; everything here is raised by the
activation pipeline (normalize -> schedule), the audio engines, export,
or the data collaborators.
"""


class TunePlayerError(Exception):
    """Base class for every error raised by the player."""


class NormalizeError(TunePlayerError):
    """MIDI generation output could not be turned into a MIDI buffer."""


class UnsupportedFormat(NormalizeError):
    """The MIDI generator returned a shape the normalizer does not know."""


class EncodingFailure(NormalizeError):
    """The MIDI generator returned an HTML link instead of binary data."""


class EmptyOutput(NormalizeError):
    """The MIDI generator returned nothing to play."""


class MalformedMidi(TunePlayerError):
    """The MIDI buffer could not be parsed into tracks."""


class EngineInitFailure(TunePlayerError):
    """Audio device, stream or synthesizer could not be created."""


class RenderTimeout(TunePlayerError):
    """Offline rendering exceeded its time or length bound."""


class NotFound(TunePlayerError, LookupError):
    """A tune or setting id is not in the catalogue."""
