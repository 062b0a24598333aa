"""
Audio decoder for the track analysis pipeline.

Sniffs the container from magic bytes, validates the raw buffer and
converts it into mono, peak-normalized float32 PCM at the source rate.
"""

import io
import logging
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
import soundfile as sf

from trackmeta.core.models import AudioFormat, PCMBuffer
from trackmeta.utils.errors import DecodeError


# Constants
MIN_FILE_SIZE: int = 100  # bytes
MAX_FILE_SIZE: int = 52428800  # 50 MB
DEFAULT_SAMPLE_RATE: int = 44100  # Hz

# MPEG-1 Layer III lookup tables
MP3_SAMPLE_RATES = [44100, 48000, 32000]
MP3_BITRATES = [0, 32, 40, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320]  # kbps
MP3_DEFAULT_BITRATE = 128

# Placeholder waveform used when an MP3 stream cannot be decoded
PLACEHOLDER_FREQUENCY = 440.0  # A4
PLACEHOLDER_AMPLITUDE = 0.1

logger = logging.getLogger("decoder")


@dataclass(frozen=True)
class Mp3FrameInfo:
    """Fields parsed from the first MPEG audio frame header."""

    sample_rate: int
    bitrate: int  # kbps
    channels: int
    duration: float  # seconds, estimated from stream size and bitrate


def _is_mp3_sync(data: bytes, offset: int = 0) -> bool:
    return (
        len(data) > offset + 1
        and data[offset] == 0xFF
        and (data[offset + 1] & 0xE0) == 0xE0
    )


def id3_tag_size(data: bytes) -> int:
    """
    Size of a leading ID3v2 tag including its 10-byte header.

    The size field is a synch-safe integer (7 bits per byte).
    Returns 0 when the buffer is too short to hold a header.
    """
    if len(data) < 10:
        return 0
    size = (data[6] << 21) | (data[7] << 14) | (data[8] << 7) | data[9]
    return size + 10


def parse_mp3_header(data: bytes) -> Mp3FrameInfo:
    """
    Parse the first MPEG frame header found in ``data``.

    Raises:
        ValueError: If no frame sync is found
    """
    frame_start = -1
    pos = data.find(b'\xff')
    while 0 <= pos < len(data) - 4:
        if _is_mp3_sync(data, pos):
            frame_start = pos
            break
        pos = data.find(b'\xff', pos + 1)

    if frame_start == -1:
        raise ValueError("No valid MP3 frame found")

    header = struct.unpack('>I', data[frame_start:frame_start + 4])[0]

    bitrate_index = (header >> 12) & 0xF
    sample_rate_index = (header >> 10) & 0x3
    channel_mode = (header >> 6) & 0x3

    sample_rate = (
        MP3_SAMPLE_RATES[sample_rate_index]
        if sample_rate_index < len(MP3_SAMPLE_RATES) else DEFAULT_SAMPLE_RATE
    )
    bitrate = (
        MP3_BITRATES[bitrate_index]
        if bitrate_index < len(MP3_BITRATES) else 0
    ) or MP3_DEFAULT_BITRATE
    channels = 1 if channel_mode == 3 else 2

    duration = (len(data) * 8) / (bitrate * 1000)

    return Mp3FrameInfo(
        sample_rate=sample_rate,
        bitrate=bitrate,
        channels=channels,
        duration=duration,
    )


def placeholder_waveform(num_samples: int, sample_rate: int) -> np.ndarray:
    """Harmonic blend around A4 standing in for undecodable audio."""
    t = np.arange(num_samples, dtype=np.float64) / sample_rate
    omega = 2 * np.pi * PLACEHOLDER_FREQUENCY
    wave = (
        np.sin(omega * t) * 0.6
        + np.sin(omega * 2 * t) * 0.3
        + np.sin(omega * 0.5 * t) * 0.1
    )
    return (PLACEHOLDER_AMPLITUDE * wave).astype(np.float32)


def normalize_samples(samples: np.ndarray) -> np.ndarray:
    """Divide by the peak when it exceeds 1.0, otherwise return unchanged."""
    if samples.size == 0:
        return samples
    peak = float(np.max(np.abs(samples)))
    if peak > 1.0:
        logger.debug(f"Normalized samples by factor {1.0 / peak:.3f}")
        return samples / peak
    return samples


class AudioDecoder:
    """
    Decodes in-memory audio buffers into PCMBuffer instances.

    Thread-safe and stateless - can be used concurrently.
    """

    def __init__(
        self,
        max_file_size: int = MAX_FILE_SIZE,
        min_file_size: int = MIN_FILE_SIZE,
        allow_placeholder: bool = True,
    ):
        """
        Initialize decoder with configuration.

        Args:
            max_file_size: Maximum buffer size in bytes
            min_file_size: Minimum buffer size in bytes
            allow_placeholder: If True, MP3 streams soundfile cannot decode
                               yield a flagged placeholder waveform instead
                               of failing
        """
        self.max_file_size = max_file_size
        self.min_file_size = min_file_size
        self.allow_placeholder = allow_placeholder

    def detect_format(self, data: bytes) -> AudioFormat:
        """Detect audio format from magic bytes."""
        if len(data) < 12:
            return AudioFormat.UNKNOWN

        if _is_mp3_sync(data):
            return AudioFormat.MP3

        if data[0:4] == b'RIFF' and data[8:12] == b'WAVE':
            return AudioFormat.WAV

        if data[0:4] == b'fLaC':
            return AudioFormat.FLAC

        if data[0:4] == b'OggS':
            return AudioFormat.OGG

        if data[0:3] == b'ID3':
            tag_size = id3_tag_size(data)
            if tag_size > 0 and len(data) > tag_size + 2 and _is_mp3_sync(data, tag_size):
                return AudioFormat.MP3

        return AudioFormat.UNKNOWN

    def validate(self, data: bytes) -> AudioFormat:
        """
        Validate a raw buffer before decoding.

        Returns:
            AudioFormat: The detected format

        Raises:
            DecodeError: EMPTY_BUFFER, BUFFER_TOO_SMALL, FILE_TOO_LARGE
                         or UNKNOWN_FORMAT
        """
        if not data:
            raise DecodeError("Audio buffer is empty", "EMPTY_BUFFER")

        size = len(data)
        if size < self.min_file_size:
            raise DecodeError(
                "Audio buffer too small to be valid audio file",
                "BUFFER_TOO_SMALL",
                {'size': size},
            )

        if size > self.max_file_size:
            raise DecodeError(
                f"Audio file too large: {size / 1024 / 1024:.1f} MB. "
                f"Maximum: {self.max_file_size / 1024 / 1024:.1f} MB",
                "FILE_TOO_LARGE",
                {'size': size, 'max_size': self.max_file_size},
            )

        audio_format = self.detect_format(data)
        if audio_format == AudioFormat.UNKNOWN:
            raise DecodeError(
                "Unknown or unsupported audio format",
                "UNKNOWN_FORMAT",
                {'header': data[:12].hex()},
            )

        return audio_format

    def decode(self, data: bytes, audio_format: Optional[AudioFormat] = None) -> PCMBuffer:
        """
        Decode audio bytes to mono PCM.

        Args:
            data: Raw file contents
            audio_format: Format override (detected from magic bytes if None)

        Returns:
            PCMBuffer: Decoded audio

        Raises:
            DecodeError: If the format is unsupported or decoding fails
        """
        audio_format = audio_format or self.detect_format(data)
        logger.info(f"Decoding {audio_format.value} audio ({len(data)} bytes)")

        if audio_format == AudioFormat.UNKNOWN:
            raise DecodeError(
                "Unsupported or unknown audio format",
                "UNSUPPORTED_FORMAT",
                {'format': audio_format.value},
            )

        try:
            if audio_format == AudioFormat.MP3:
                return self._decode_mp3(data)
            return self._decode_container(data, audio_format)

        except DecodeError:
            raise

        except Exception as e:
            raise DecodeError(
                f"Failed to decode {audio_format.value} audio: {e}",
                "DECODE_FAILED",
                {'format': audio_format.value, 'original_error': str(e)},
            ) from e

    def _decode_container(self, data: bytes, audio_format: AudioFormat) -> PCMBuffer:
        """Decode WAV/FLAC/OGG (and MP3 where libsndfile supports it)."""
        audio_data, sample_rate = sf.read(io.BytesIO(data), dtype='float32', always_2d=True)

        channels = audio_data.shape[1]
        if channels == 1:
            mono = audio_data[:, 0]
        else:
            # Mix down by per-sample averaging
            mono = audio_data.mean(axis=1)
            logger.debug(f"Mixed {channels} channels to mono")

        if mono.size == 0:
            raise DecodeError(
                f"{audio_format.value} stream contains no samples",
                "DECODE_FAILED",
                {'format': audio_format.value},
            )

        mono = normalize_samples(mono)

        logger.info(
            f"{audio_format.value} decoded: {sample_rate}Hz, "
            f"{len(mono) / sample_rate:.2f}s, {channels} channels"
        )

        return PCMBuffer.from_samples(
            mono,
            sample_rate=int(sample_rate),
            channels_original=channels,
            format=audio_format,
        )

    def _decode_mp3(self, data: bytes) -> PCMBuffer:
        """Decode MP3 through soundfile, falling back to a placeholder waveform."""
        try:
            return self._decode_container(data, AudioFormat.MP3)
        except (sf.LibsndfileError, RuntimeError, TypeError) as e:
            if not self.allow_placeholder:
                raise DecodeError(
                    f"MP3 decoding failed: {e}",
                    "MP3_DECODE_FAILED",
                    {'original_error': str(e)},
                ) from e
            logger.warning(f"MP3 decode unavailable ({e}), using placeholder waveform")

        mp3_data = data
        if data[0:3] == b'ID3':
            tag_size = id3_tag_size(data)
            mp3_data = data[tag_size:]
            logger.debug(f"Skipped ID3 tag ({tag_size} bytes)")

        try:
            info = parse_mp3_header(mp3_data)
        except ValueError as e:
            raise DecodeError(
                f"MP3 decoding failed: {e}",
                "MP3_DECODE_FAILED",
                {'original_error': str(e)},
            ) from e

        num_samples = int(np.floor(info.duration * info.sample_rate))
        samples = placeholder_waveform(num_samples, info.sample_rate)

        logger.info(
            f"MP3 placeholder: {info.sample_rate}Hz, {info.duration:.2f}s, "
            f"{info.channels} channels, {info.bitrate}kbps"
        )

        return PCMBuffer(
            samples=samples,
            sample_rate=info.sample_rate,
            duration=info.duration,
            channels_original=info.channels,
            format=AudioFormat.MP3,
            synthetic=True,
        )

    def get_sample_rate(self, data: bytes) -> int:
        """Read the sample rate from container headers without decoding."""
        audio_format = self.detect_format(data)

        try:
            if audio_format == AudioFormat.WAV and len(data) >= 28:
                return struct.unpack('<I', data[24:28])[0]

            if audio_format == AudioFormat.MP3:
                mp3_data = data[id3_tag_size(data):] if data[0:3] == b'ID3' else data
                return parse_mp3_header(mp3_data).sample_rate

            if audio_format == AudioFormat.FLAC and len(data) >= 21:
                # STREAMINFO: 20-bit sample rate after 10 bytes of block/frame sizes
                return (data[18] << 12) | (data[19] << 4) | (data[20] >> 4)

        except (ValueError, struct.error) as e:
            logger.warning(f"Failed to extract sample rate: {e}")

        return DEFAULT_SAMPLE_RATE

    def decode_validated(self, data: bytes) -> PCMBuffer:
        """Validate then decode in one call."""
        audio_format = self.validate(data)
        return self.decode(data, audio_format)


def create_audio_decoder(config: Optional[Dict[str, Any]] = None) -> AudioDecoder:
    """
    Factory function to create AudioDecoder with configuration.

    Args:
        config: Optional ``audio`` configuration section

    Returns:
        AudioDecoder: Configured decoder instance
    """
    if config is None:
        config = {}

    return AudioDecoder(
        max_file_size=config.get('max_file_size', MAX_FILE_SIZE),
        min_file_size=config.get('min_file_size', MIN_FILE_SIZE),
        allow_placeholder=config.get('allow_placeholder', True),
    )
