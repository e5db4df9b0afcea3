"""MIDI generation output -> canonical MIDI bytes.

The notation-to-MIDI step has returned different shapes across releases
and for multi-tune sources. Every shape we have seen is one of a closed
set of variants, detected here in a fixed order:

    BINARY      file-like object with read()
    BUFFER      bytes / bytearray
    VIEW        memoryview
    COLLECTION  list / tuple, one entry per tune version
    TEXT        str, raw or percent-encoded bytes (or an HTML link)
    WRAPPER     mapping or object holding one of the above

Anything else is rejected with UnsupportedFormat.
"""

from collections.abc import Mapping
from urllib.parse import unquote

from .errors import UnsupportedFormat, EncodingFailure, EmptyOutput

BINARY = 'binary'
BUFFER = 'buffer'
VIEW = 'view'
COLLECTION = 'collection'
TEXT = 'text'
WRAPPER = 'wrapper'

_WRAPPER_FIELDS = ('blob', 'tobytes', 'buffer', 'data')
_SCALARS = (int, float, complex, bool)


def _is_binary(obj):
    return callable(getattr(obj, 'read', None)) and not isinstance(obj, (str, bytes))


def classify(raw):
    """Return the variant tag for a MIDI generator output, or None."""
    if _is_binary(raw):
        return BINARY
    if isinstance(raw, (bytes, bytearray)):
        return BUFFER
    if isinstance(raw, memoryview):
        return VIEW
    if isinstance(raw, (list, tuple)):
        return COLLECTION
    if isinstance(raw, str):
        return TEXT
    if raw is None or isinstance(raw, _SCALARS):
        return None
    if isinstance(raw, Mapping) or hasattr(raw, '__dict__') or any(
            hasattr(raw, name) for name in _WRAPPER_FIELDS):
        return WRAPPER
    return None


def normalize(raw, version_index=0):
    """Convert any known MIDI generator output into MIDI file bytes.

    version_index picks one tune out of a multi-version collection;
    out-of-range indexes fall back to the first version.
    """
    kind = classify(raw)

    if kind == BINARY:
        print("[normalize] binary object")
        return _read_binary(raw)

    if kind == BUFFER:
        print("[normalize] byte buffer")
        return bytes(raw)

    if kind == VIEW:
        print("[normalize] memory view")
        return raw.tobytes()

    if kind == COLLECTION:
        print(f"[normalize] collection of {len(raw)}, selecting index {version_index}")
        if not raw:
            raise EmptyOutput("MIDI generator returned an empty collection")
        idx = version_index if 0 <= version_index < len(raw) else 0
        return normalize(raw[idx], 0)

    if kind == TEXT:
        if raw.lstrip().startswith('<'):
            raise EncodingFailure(
                "MIDI generator returned an HTML link instead of binary MIDI data")
        print("[normalize] string, decoding")
        return _text_to_bytes(raw)

    if kind == WRAPPER:
        return _unwrap(raw)

    raise UnsupportedFormat(f"Unsupported MIDI output type: {type(raw).__name__}")


def _read_binary(obj):
    if hasattr(obj, 'seek'):
        try:
            obj.seek(0)
        except (OSError, ValueError):
            pass  # non-seekable streams are read from where they are
    data = obj.read()
    if isinstance(data, str):
        return _text_to_bytes(data)
    return bytes(data)


def _field(obj, name):
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _unwrap(obj):
    """Try the wrapper fields in order: blob, tobytes(), buffer, data."""
    blob = _field(obj, 'blob')
    if blob is not None and _is_binary(blob):
        print("[normalize]   -> using .blob")
        return _read_binary(blob)

    tobytes = _field(obj, 'tobytes')
    if callable(tobytes):
        print("[normalize]   -> using .tobytes()")
        return bytes(tobytes())

    buf = _field(obj, 'buffer')
    if isinstance(buf, (bytes, bytearray, memoryview)):
        print("[normalize]   -> using .buffer")
        return bytes(buf)

    data = _field(obj, 'data')
    if isinstance(data, str) and data:
        print("[normalize]   -> using .data")
        return _text_to_bytes(data)

    if isinstance(obj, Mapping):
        keys = list(obj.keys())
    else:
        keys = sorted(k for k in vars(obj)) if hasattr(obj, '__dict__') else []
    raise UnsupportedFormat(
        f"Unknown {type(obj).__name__} shape from MIDI generator. "
        f"Keys: {', '.join(map(str, keys))}")


def _text_to_bytes(text):
    """Percent-decode (only when '%' is present), then one byte per char."""
    if '%' in text:
        text = unquote(text, encoding='latin-1')
    return bytes(ord(c) & 0xFF for c in text)
