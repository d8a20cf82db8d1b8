# tests/integration/test_pipeline.py

import logging

import pytest
import numpy as np

from orimap import (
    PipelineConfig,
    EmptyTileError,
    PointFormatError,
    process_tile
)
from orimap.lidar import PointCloud
from orimap.terrain import ContourKind
from orimap.vector import contours_to_vector

from helpers import assert_grid_match

def test_flat_tile(flat_cloud):
    products = process_tile(flat_cloud, PipelineConfig(), tile_id="flat")

    assert products.tile == "flat"
    assert products.contours == []
    assert products.cliffs1 == [] and products.cliffs2 == []
    assert products.knolls == []
    assert not products.shade.data.any()
    assert not products.yellow.data.any()
    assert np.allclose(products.ground.data, 100.0)
    for grid in products.grids().values():
        assert_grid_match(grid, products.ground)

def test_cone_tile(cone_cloud):
    config = PipelineConfig(cell_size=1.0, formline=0, contour_interval=5.0)
    products = process_tile(cone_cloud, config)

    lines = [c for c in products.contours if not c.dot]
    assert [c.level for c in lines] == [5.0, 10.0]
    assert all(c.closed and c.kind == ContourKind.CONTOUR for c in lines)
    assert products.cliffs2 == []

def test_knoll_detection_leaves_ground_product(cone_cloud):
    config = PipelineConfig(cell_size=1.0, formline=0, contour_interval=5.0)
    plain = process_tile(cone_cloud, config)
    raised = process_tile(cone_cloud, config.replace(detect_knolls=True))

    assert np.array_equal(raised.ground.data, plain.ground.data)
    assert all(c.kind in ContourKind for c in raised.contours)
    for grid in raised.grids().values():
        assert_grid_match(grid, raised.ground)

def test_runs_are_deterministic(forest_cloud):
    config = PipelineConfig(contour_interval=1.0, thinfactor=0.8, thinseed=11)
    first = process_tile(forest_cloud, config)
    second = process_tile(forest_cloud, config)

    for name, grid in first.grids().items():
        assert np.array_equal(grid.data, second.grids()[name].data), name
    assert len(first.contours) == len(second.contours)
    for a, b in zip(first.contours, second.contours):
        assert a.level == b.level and a.kind == b.kind
        assert np.array_equal(a.vertices, b.vertices)

def test_forest_tile_products(forest_cloud):
    products = process_tile(forest_cloud, PipelineConfig(medianboxsize=1))

    assert products.shade.data[:, :8].all()
    assert not products.shade.data[:, 14:].any()
    assert products.shade.data.dtype == np.uint8
    assert products.yellow.data.dtype == bool

def test_file_tile_uses_stem(las_factory, cone_cloud):
    path = las_factory(cone_cloud, name="cone_0001.las")
    config = PipelineConfig(cell_size=1.0, formline=0, contour_interval=5.0)
    products = process_tile(path, config, crs="EPSG:3067")

    assert products.tile == "cone_0001"
    assert products.ground.crs == "EPSG:3067"
    assert len([c for c in products.contours if not c.dot]) == 2

    layer = contours_to_vector(products.contours, crs=products.ground.crs)
    assert len(layer) == len(products.contours)

def test_unreadable_file_names_the_tile(tmp_path, caplog):
    path = tmp_path / "broken_7.laz"
    path.write_bytes(b"\x00" * 512)

    with caplog.at_level(logging.ERROR):
        with pytest.raises(PointFormatError) as err:
            process_tile(path)
    assert err.value.tile == "broken_7"
    assert "broken_7" in str(err.value)
    assert "broken_7" in caplog.text

def test_empty_tile_names_the_tile():
    with pytest.raises(EmptyTileError) as err:
        process_tile(PointCloud.from_arrays([], [], []), tile_id="t1")
    assert err.value.tile == "t1"
