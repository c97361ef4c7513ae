"""
Analyzer base interface for the sample ingestion pipeline.

Every analyzer reads a decoded AudioBuffer and returns an immutable result.
Analyzers hold no per-call state, so one instance can serve many threads.
"""

import logging
import time
from abc import abstractmethod
from typing import Any, Generic, Protocol, TypeVar

from sample_pipeline.core.models import AudioBuffer
from sample_pipeline.utils.errors import AnalysisError

T = TypeVar('T')
T_co = TypeVar('T_co', covariant=True)


class Analyzer(Protocol[T_co]):
    """
    Structural interface shared by all analyzers.

    A class doesn't need to inherit from Analyzer to be compatible, it just
    needs ``name``, ``version`` and ``analyze``.
    """

    @property
    def name(self) -> str:
        ...

    @property
    def version(self) -> str:
        ...

    def analyze(self, buffer: AudioBuffer) -> T_co:
        ...


class BaseAnalyzer(Generic[T]):
    """
    Optional base class providing timing, logging and error wrapping.

    Template Method: analyze() wraps _analyze_impl(), which subclasses
    implement. Extra keyword arguments are passed through unchanged.
    """

    def __init__(self, name: str, version: str):
        self._name = name
        self._version = version
        self.logger = logging.getLogger(f"analyzer.{name}")

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    def analyze(self, buffer: AudioBuffer, **kwargs: Any) -> T:
        """
        Run the analyzer with timing and error handling.

        Raises:
            AnalysisError: If analysis fails for any reason
        """
        start_time = time.perf_counter()

        try:
            self.logger.debug(
                f"Starting analysis: {buffer.frame_count} frames @ {buffer.sample_rate} Hz"
            )
            result = self._analyze_impl(buffer, **kwargs)
            elapsed = time.perf_counter() - start_time
            self.logger.debug(f"Analysis complete in {elapsed:.3f}s")
            return result

        except AnalysisError:
            raise

        except Exception as e:
            self.logger.error(f"Analysis failed: {e}")
            raise AnalysisError(
                f"{self.name} analysis failed: {e}",
                analyzer_name=self.name,
                original_error=e
            ) from e

    @abstractmethod
    def _analyze_impl(self, buffer: AudioBuffer, **kwargs: Any) -> T:
        raise NotImplementedError
