"""Exception types raised by gfalook."""

from __future__ import annotations

from typing import Any, Optional


class GfalookError(Exception):
    """Base class for all gfalook errors."""


class IntegrityError(GfalookError):
    """Fatal data-integrity problem in the input graph or a coordinate range.

    The offending path, segment, bin index or raw value are kept as attributes
    and appended to the message so a failure can be diagnosed from the log.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        segment: Optional[Any] = None,
        bin_index: Optional[int] = None,
        value: Optional[Any] = None,
    ):
        self.path = path
        self.segment = segment
        self.bin_index = bin_index
        self.value = value
        context = []
        if path is not None:
            context.append(f"path={path!r}")
        if segment is not None:
            context.append(f"segment={segment!r}")
        if bin_index is not None:
            context.append(f"bin={bin_index}")
        if value is not None:
            context.append(f"value={value!r}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class ConfigurationError(GfalookError, ValueError):
    """Conflicting or out-of-range options, reported before any computation."""
