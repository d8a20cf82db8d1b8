# src/orimap/vector/features.py

"""
This module converts contour and cliff features into GeoDataFrames for the export collaborators.
"""

from typing import Iterable, Optional, Sequence, Union
import logging

import geopandas as gpd
import pandas as pd
from rasterio.crs import CRS
from shapely.geometry import LineString, Point

from orimap.terrain.cliffs import Cliff
from orimap.terrain.contours import Contour, ContourKind

from .layer import Vector

log = logging.getLogger(__name__)

__all__ = [
    "contours_to_vector",
    "cliffs_to_vector",
    "select_kinds"
]

def contours_to_vector(
    contours: Iterable[Contour],
    crs: Optional[Union[str, CRS]] = None
    ) -> Vector:
    """
    Builds a vector layer of contour features.

    Lines become LineStrings and dots become Points. The attribute table carries level, kind,
    dashed, dot and crowded so renderers can pick symbols.

    Args:
        contours (Iterable[Contour]): Contour features in output order.
        crs (Optional[Union[str, CRS]]): Coordinate reference system of the tile.

    Returns:
        Vector: One row per feature, in input order.
    """
    records = []
    geometries = []
    for c in contours:
        records.append({
            "level": c.level, "kind": c.kind.value, "dashed": c.dashed, "dot": c.dot, "crowded": c.crowded
        })
        geometries.append(Point(c.vertices[0]) if c.dot else LineString(c.vertices))

    attrs = pd.DataFrame.from_records(records, columns=["level", "kind", "dashed", "dot", "crowded"])
    gdf = gpd.GeoDataFrame(attrs, geometry=geometries, crs=crs)
    log.debug(f"Built contour layer with {len(gdf)} features")
    return Vector(gdf)

def cliffs_to_vector(
    cliffs: Iterable[Cliff],
    crs: Optional[Union[str, CRS]] = None
    ) -> Vector:
    """Builds a vector layer of cliff polylines with their kind (1 erasable, 2 impassable)."""
    cliffs = list(cliffs)
    attrs = pd.DataFrame({
        "kind": pd.Series([int(c.kind) for c in cliffs], dtype="int64"),
        "length": pd.Series([c.length for c in cliffs], dtype="float64")
    })
    geometries = [LineString(c.vertices) for c in cliffs]
    return Vector(gpd.GeoDataFrame(attrs, geometry=geometries, crs=crs))

def select_kinds(vector: Vector, kinds: Sequence[Union[str, ContourKind]]) -> Vector:
    """Keeps the contour features of the given kinds."""
    values = [k.value if isinstance(k, ContourKind) else k for k in kinds]
    mask = vector.data["kind"].isin(values)
    return Vector(vector.data.loc[mask].copy())
