"""Rendered audio buffers and the WAV/MIDI export encoders."""

import io
import struct
import wave
from dataclasses import dataclass

import numpy as np

WAV_HEADER_SIZE = 44


@dataclass
class AudioBuffer:
    """Rendered audio. samples is (frames, channels) float32 in [-1, 1]."""
    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return 1 if self.samples.ndim == 1 else int(self.samples.shape[1])

    @property
    def duration_seconds(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate else 0.0


@dataclass(frozen=True)
class WavHeader:
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int


def to_pcm16(samples):
    """Float samples to int16: clamp to [-1, 1], negatives * 32768, positives * 32767."""
    x = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    return np.where(x < 0, x * 32768.0, x * 32767.0).astype(np.int16)


def encode_wav(buf: AudioBuffer) -> bytes:
    """Encode as 16-bit PCM RIFF/WAVE with a 44-byte header, samples interleaved."""
    samples = buf.samples
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    pcm = to_pcm16(samples)

    out = io.BytesIO()
    with wave.open(out, 'wb') as wf:
        wf.setnchannels(pcm.shape[1])
        wf.setsampwidth(2)
        wf.setframerate(int(buf.sample_rate))
        wf.writeframes(pcm.astype('<i2').tobytes())
    return out.getvalue()


def read_wav_header(data: bytes) -> WavHeader:
    """Parse the canonical 44-byte PCM header written by encode_wav."""
    if len(data) < WAV_HEADER_SIZE or data[:4] != b'RIFF' or data[8:12] != b'WAVE':
        raise ValueError("Not a RIFF/WAVE file")
    (fmt_id, _fmt_size, _audio_format, channels, sample_rate,
     byte_rate, block_align, bits) = struct.unpack('<4sIHHIIHH', data[12:36])
    data_id, data_size = struct.unpack('<4sI', data[36:44])
    if fmt_id != b'fmt ' or data_id != b'data':
        raise ValueError("Unexpected WAV chunk layout")
    return WavHeader(channels, sample_rate, byte_rate, block_align, bits, data_size)


def encode_midi(canonical: bytes) -> bytes:
    """MIDI export is the canonical buffer, unchanged."""
    return bytes(canonical)


def export_filename(setting_id, extension, version_index=None):
    """tune-<id>.<ext>, or tune-<id>-v<n>.<ext> with n = version_index + 1."""
    ext = extension.lstrip('.')
    if version_index is None:
        return f'tune-{setting_id}.{ext}'
    return f'tune-{setting_id}-v{version_index + 1}.{ext}'
