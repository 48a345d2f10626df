from __future__ import annotations


class TileChopperError(RuntimeError):
    """Base class for conditions that abort a build."""


class GeometrySpanError(TileChopperError):
    """A polygon covers an implausibly large part of the bucket grid."""


class TileIndexError(TileChopperError):
    """The persistent fragment counter could not be locked, read or written."""


class TileStoreError(TileChopperError):
    """A fragment file could not be written or read back."""
