"""
Audio decoder for the sample ingestion pipeline.

Turns uploaded bytes into an AudioBuffer without touching the filesystem.
"""

import asyncio
import io
import logging
from concurrent.futures import Executor
from typing import Any, Dict, Optional, Protocol

import numpy as np
import soundfile as sf

from sample_pipeline.core.models import AudioBuffer
from sample_pipeline.utils.errors import DecodeError

logger = logging.getLogger(__name__)

SUBTYPE_BIT_DEPTHS: Dict[str, int] = {
    'PCM_S8': 8,
    'PCM_U8': 8,
    'PCM_16': 16,
    'PCM_24': 24,
    'PCM_32': 32,
    'FLOAT': 32,
    'DOUBLE': 64,
}


class Decoder(Protocol):
    """Anything that can turn encoded bytes into PCM."""

    def decode(self, data: bytes, filename: str = "") -> AudioBuffer:
        ...


class SoundfileDecoder:
    """
    Decodes WAV/AIFF/FLAC (and MP3 with libsndfile >= 1.1) via soundfile.

    Thread-safe and stateless - can be used concurrently.
    """

    def __init__(self, normalize_clipping: bool = True):
        """
        Args:
            normalize_clipping: Scale the buffer back into [-1, 1] when the
                decoded floats exceed full scale
        """
        self.normalize_clipping = normalize_clipping

    def decode(self, data: bytes, filename: str = "") -> AudioBuffer:
        """
        Decode a complete file held in memory.

        Raises:
            DecodeError: libsndfile cannot read the data
        """
        if not data:
            raise DecodeError(f"No audio data in {filename or 'upload'}", filename=filename)

        try:
            with sf.SoundFile(io.BytesIO(data)) as f:
                sample_rate = f.samplerate
                subtype = f.subtype
                frames = f.frames
                pcm = f.read(dtype='float32', always_2d=True)
        # LibsndfileError is a RuntimeError subclass
        except (RuntimeError, ValueError) as e:
            raise DecodeError(
                f"Failed to decode audio data from {filename or 'upload'}: {e}",
                filename=filename
            ) from e

        channels = np.ascontiguousarray(pcm.T)
        channels = self._check_levels(channels, filename)

        reported = frames / sample_rate if sample_rate else None
        logger.debug(
            f"Decoded {filename}: {sample_rate} Hz, {channels.shape[0]} ch, {subtype}"
        )

        return AudioBuffer.from_pcm(
            channels,
            sample_rate=sample_rate,
            reported_duration=reported,
            byte_size=len(data),
            bit_depth=SUBTYPE_BIT_DEPTHS.get(subtype),
        )

    def _check_levels(self, channels: np.ndarray, filename: str) -> np.ndarray:
        if channels.size == 0:
            return channels

        rms = float(np.sqrt(np.mean(channels.astype(np.float64) ** 2)))
        if rms < 1e-6:
            logger.warning(f"Audio appears to be silent: {filename}")

        max_abs = float(np.max(np.abs(channels)))
        if self.normalize_clipping and max_abs > 1.0:
            logger.warning(
                f"Audio exceeds full scale (max: {max_abs:.2f}), normalizing: {filename}"
            )
            channels = channels / max_abs

        return channels


class AsyncDecoder:
    """Runs a blocking decoder on an executor for async callers."""

    def __init__(
        self,
        decoder: Optional[Decoder] = None,
        executor: Optional[Executor] = None
    ):
        """
        Args:
            decoder: Decoder instance (SoundfileDecoder if None)
            executor: Executor for the blocking call (loop default if None)
        """
        self.decoder = decoder if decoder is not None else SoundfileDecoder()
        self.executor = executor

    async def decode(self, data: bytes, filename: str = "") -> AudioBuffer:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor,
            self.decoder.decode,
            data,
            filename
        )


def create_decoder(config: Optional[Dict[str, Any]] = None) -> SoundfileDecoder:
    """
    Factory function to create a decoder from the ``decoder`` config section.
    """
    if config is None:
        config = {}

    return SoundfileDecoder(
        normalize_clipping=config.get('normalize_clipping', True)
    )
