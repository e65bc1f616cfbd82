"""Abstract AV engine adapter interface and scan verdict type.

Defines the contract that all AV engine adapters must fulfil.  The concrete
implementation is :class:`~bucketguard.core.clamav_adapter.ClamAVAdapter`.

Design principle: **fail-secure**.  Adapter implementations must **never**
report a file as clean when the engine could not complete the scan.  Any
unhandled exception, engine unavailability or unexpected response must result
in ``ScanVerdict(status="indeterminate", ...)``, which the orchestrator
records as a FAILED scan.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Literal

from bucketguard.core.storage import ByteStream


@dataclass(frozen=True)
class ScanVerdict:
    """Result of an AV engine scan operation.

    Attributes:
        status: Overall verdict.
            - ``"clean"``         – no threats detected.
            - ``"infected"``      – one or more threats detected.
            - ``"indeterminate"`` – the scan could not be completed (engine
              error, connection failure); never treated as clean.
        viruses: Threat names reported by the engine.  Empty unless
            ``status == "infected"``.
        duration_ms: Wall-clock time taken for the scan in milliseconds.
        engine: Name of the engine that produced this verdict.
        detail: Engine error message for indeterminate verdicts.
    """

    status: Literal["clean", "infected", "indeterminate"]
    viruses: tuple[str, ...] = field(default_factory=tuple)
    duration_ms: int = 0
    engine: str = "unknown"
    detail: str | None = None

    @property
    def is_infected(self) -> bool:
        return self.status == "infected"


class AVEngineAdapter(abc.ABC):
    """Abstract base class for AV engine adapters.

    All adapters must implement :meth:`scan_stream` and :meth:`ping`.  The
    fail-secure contract requires that on any engine failure
    :meth:`scan_stream` returns an ``"indeterminate"`` verdict rather than
    raising.
    """

    #: Short identifier used in logs and verdicts.
    ENGINE_NAME = "unknown"

    @abc.abstractmethod
    async def scan_stream(self, stream: ByteStream) -> ScanVerdict:
        """Stream the bytes of *stream* to the engine and return a verdict.

        The adapter reads *stream* until exhausted but does not close it; the
        caller owns the stream.

        Args:
            stream: Readable byte stream (e.g. an S3 ``StreamingBody``).

        Returns:
            A :class:`ScanVerdict` with ``status`` set to ``"clean"``,
            ``"infected"`` or ``"indeterminate"``.
        """

    @abc.abstractmethod
    async def ping(self) -> bool:
        """Return ``True`` if the engine is reachable and healthy.

        Used by the ``/health`` endpoint and by :meth:`initialize`.
        """

    async def initialize(self) -> None:
        """Wait for the engine to become healthy before accepting work.

        The default implementation does nothing.

        Raises:
            bucketguard.core.errors.EngineUnavailableError: when the engine
                never becomes healthy.
        """
