# tests/unit/test_vector.py

import pytest
import numpy as np
import geopandas as gpd

from orimap.terrain import Cliff, CliffKind, Contour, ContourKind
from orimap.vector import Vector, contours_to_vector, cliffs_to_vector, select_kinds

@pytest.fixture
def features():
    return [
        Contour(5.0, np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0]])),
        Contour(7.5, np.array([[0.0, 5.0], [10.0, 5.0]]), ContourKind.FORMLINE, dashed=True),
        Contour(10.0, np.array([[3.0, 4.0]]), ContourKind.KNOLL, dot=True, crowded=True),
    ]

def test_contours_to_vector(features):
    vector = contours_to_vector(features, crs="EPSG:3067")

    assert len(vector) == 3
    assert vector.columns == ["level", "kind", "dashed", "dot", "crowded", "geometry"]
    assert vector.data["kind"].tolist() == ["contour", "formline", "knoll"]
    assert vector.data.geometry.geom_type.tolist() == ["LineString", "LineString", "Point"]
    assert vector.crs.to_epsg() == 3067
    assert vector.data.iloc[1]["dashed"]
    assert vector.data["crowded"].tolist() == [False, False, True]

def test_empty_layers():
    assert len(contours_to_vector([])) == 0
    assert len(cliffs_to_vector([])) == 0

def test_cliffs_to_vector():
    cliffs = [
        Cliff(np.array([[0.0, 0.0], [3.0, 4.0]]), CliffKind.ERASABLE),
        Cliff(np.array([[0.0, 0.0], [0.0, 2.0]]), CliffKind.IMPASSABLE),
    ]
    vector = cliffs_to_vector(cliffs)

    assert vector.data["kind"].tolist() == [1, 2]
    assert vector.data["length"].tolist() == pytest.approx([5.0, 2.0])

def test_select_kinds(features):
    vector = contours_to_vector(features)
    selected = select_kinds(vector, [ContourKind.KNOLL, "formline"])
    assert selected.data["level"].tolist() == [7.5, 10.0]

def test_vector_requires_geodataframe():
    with pytest.raises(TypeError):
        Vector([1, 2, 3])
    assert len(Vector(gpd.GeoDataFrame(geometry=[]))) == 0
