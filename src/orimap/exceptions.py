# src/orimap/exceptions.py

"""
This module defines the exception hierarchy shared by every orimap processing stage.

Input errors (unreadable or empty tiles) and configuration errors abort a single tile.
Grid invariant errors signal an internal inconsistency and are never expected in a correct run.
"""

from typing import Optional

__all__ = [
    "OrimapError",
    "PointFormatError",
    "EmptyTileError",
    "ConfigurationError",
    "GridInvariantError"
]

class OrimapError(Exception):
    """
    Base class for all orimap errors.

    Attributes:
        tile (Optional[str]): Identity of the tile being processed when the error was raised.
    """

    def __init__(self, message: str, tile: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tile = tile

    def with_tile(self, tile: Optional[str]) -> "OrimapError":
        """Attaches a tile identity unless one is already recorded."""
        if self.tile is None and tile is not None:
            self.tile = tile
        return self

    def __str__(self) -> str:
        if self.tile is None:
            return self.message
        return f"[{self.tile}] {self.message}"

class PointFormatError(OrimapError, ValueError):
    """The point source could not be parsed as a LAS/LAZ point cloud."""

class EmptyTileError(OrimapError, ValueError):
    """The tile contains no points, before or after decimation."""

class ConfigurationError(OrimapError, ValueError):
    """A tunable is out of range or a zone/band/shade table is malformed."""

class GridInvariantError(OrimapError, RuntimeError):
    """An internal raster or geometry invariant was violated."""
