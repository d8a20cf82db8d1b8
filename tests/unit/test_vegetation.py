# tests/unit/test_vegetation.py

import pytest
import numpy as np

from orimap.config import PipelineConfig, Zone, ThresholdBand, DEFAULT_THRESHOLDS
from orimap.exceptions import ConfigurationError
from orimap.lidar import (
    PointCloud,
    accumulate_hits,
    volume_correction,
    select_threshold,
    shade_index,
    classify_vegetation,
    generate_ground,
    generate_canopy
)
from orimap.raster import define_grid

from helpers import make_grid, surface_points, merge_points

def _one_cell(z, classification, return_number, number_of_returns):
    n = len(z)
    return PointCloud.from_arrays(
        np.full(n, 0.5), np.full(n, 0.5), z,
        classification=classification,
        return_number=return_number,
        number_of_returns=number_of_returns
    )

def _layers(pc, config):
    grid = define_grid(pc.min_x, pc.max_x, pc.min_y, pc.max_y, config.cell_size)
    ground = generate_ground(pc, grid, config)
    return ground, generate_canopy(pc, ground, config)

@pytest.mark.parametrize("roof, expected", [(1.0, 0.7), (100.0, 0.0)])
def test_zone_weight_depends_on_canopy(roof, expected):
    config = PipelineConfig(zones=(Zone(1.0, 2.65, 99.0, 0.7),))
    pc = _one_cell([2.0], classification=[4], return_number=[1], number_of_returns=[2])

    hits = accumulate_hits(pc, make_grid([[0.0]]), make_grid([[roof]]), config)
    assert hits.green[0, 0] == pytest.approx(expected)

def test_overlapping_zones_add_up():
    config = PipelineConfig(zones=(Zone(1.0, 3.0, 99.0, 0.5), Zone(1.5, 2.5, 99.0, 0.25)))
    pc = _one_cell([2.0], classification=[4], return_number=[1], number_of_returns=[2])

    hits = accumulate_hits(pc, make_grid([[0.0]]), make_grid([[2.0]]), config)
    assert hits.green[0, 0] == pytest.approx(0.75)

def test_ground_hits_and_single_return_bias():
    config = PipelineConfig()
    pc = _one_cell(
        [0.0, 0.0, 0.5, 2.0],
        classification=[2, 2, 4, 4],
        return_number=[1, 1, 2, 1],
        number_of_returns=[1, 2, 2, 2]
    )

    hits = accumulate_hits(pc, make_grid([[0.0]]), make_grid([[2.0]]), config)
    # single return ground counts 3, the other ground return and the low vegetation return 1 each
    assert hits.ground[0, 0] == pytest.approx(5.0)
    assert hits.green[0, 0] == pytest.approx(1.0)
    assert hits.points[0, 0] == 4

def test_water_returns_are_not_ground_hits():
    config = PipelineConfig()
    pc = _one_cell(
        [0.0, 0.0],
        classification=[9, 2],
        return_number=[1, 1],
        number_of_returns=[2, 2]
    )

    hits = accumulate_hits(pc, make_grid([[0.0]]), make_grid([[0.0]]), config)
    assert hits.ground[0, 0] == pytest.approx(1.0)
    assert hits.undergrowth_clear[0, 0] == pytest.approx(2.0)
    assert hits.green[0, 0] == 0.0

def test_last_return_factor():
    config = PipelineConfig(lastreturnfactor=0.5)
    pc = _one_cell([2.0], classification=[4], return_number=[2], number_of_returns=[2])

    hits = accumulate_hits(pc, make_grid([[0.0]]), make_grid([[2.0]]), config)
    assert hits.green[0, 0] == pytest.approx(0.5)

def test_volume_correction():
    points = np.array([[0.0, 2.0], [4.0, 6.0]])
    correction = volume_correction(points, factor=0.1, exponent=1.0)

    assert np.allclose(correction, [[1.0, 0.95], [0.9, 0.85]])
    assert np.all(volume_correction(np.zeros((2, 2)), 0.1, 1.0) == 1.0)

def test_overlap_duplication_never_increases_density(forest_cloud):
    config = PipelineConfig()
    strip = forest_cloud.subset(forest_cloud.y < 10.0)
    overlapped = merge_points({
        k: np.concatenate([getattr(forest_cloud, k), getattr(strip, k)])
        for k in ("x", "y", "z", "classification", "return_number", "number_of_returns")
    })

    base = classify_vegetation(forest_cloud, *_layers(forest_cloud, config), config)
    dup = classify_vegetation(overlapped, *_layers(overlapped, config), config)

    # the southern five rows of the western half were scanned twice
    before = base.density.data[15:, :10]
    after = dup.density.data[15:, :10]
    assert np.all(before > 0)
    assert np.all(after <= before + 1e-12)

def test_shade_index_is_monotonic_and_saturates():
    cuts = (0.2, 0.5, 1.0)
    values = np.array([-1.0, 0.0, 0.1, 0.2, 0.6, 5.0, 1e9])
    levels = shade_index(values, cuts)

    assert list(levels) == [0, 0, 0, 1, 2, 3, 3]
    assert np.all(np.diff(levels.astype(int)) >= 0)
    assert levels.dtype == np.uint8

def test_select_threshold():
    assert select_threshold(3.0, DEFAULT_THRESHOLDS) == ThresholdBand(3.0, 4.0, 0.1)
    assert select_threshold(0.1, DEFAULT_THRESHOLDS) is None
    assert select_threshold(99.0, DEFAULT_THRESHOLDS) is None

def test_vegetated_cell_without_band_raises(forest_cloud):
    config = PipelineConfig(thresholds=(ThresholdBand(5.0, 99.0, 0.1),))
    with pytest.raises(ConfigurationError):
        classify_vegetation(forest_cloud, *_layers(forest_cloud, config), config)

def test_forest_is_green_and_open_land_is_not(forest_cloud):
    config = PipelineConfig(greendetectsize=0)
    result = classify_vegetation(forest_cloud, *_layers(forest_cloud, config), config)

    assert np.all(result.shade.data[:, :10] > 0)
    assert np.all(result.shade.data[:, 10:] == 0)
    assert np.all(result.green_factor.data >= 0)
    assert result.shade.same_grid(result.density)

def test_yellow_marks_low_vegetation_only():
    flat = lambda x, y: np.full_like(x, 10.0)
    pc = merge_points(
        surface_points(flat, rows=4, cols=8, cell_size=2.0, per_cell=2),
        # grass on the east half, trees on the west half
        surface_points(lambda x, y: np.where(x > 8.0, 10.3, 12.0), rows=4, cols=8, cell_size=2.0,
                       per_cell=2, classification=1, return_number=1, number_of_returns=2),
    )
    config = PipelineConfig(greendetectsize=0)
    result = classify_vegetation(pc, *_layers(pc, config), config)

    assert result.yellow.data.dtype == bool
    assert np.all(result.yellow.data[:, 4:])
    assert not np.any(result.yellow.data[:, :4])

@pytest.mark.parametrize("layers, expected", [(1, 1), (2, 2)])
def test_undergrowth_levels(layers, expected):
    flat = lambda x, y: np.zeros_like(x)
    parts = [surface_points(flat, rows=4, cols=4, cell_size=2.0, per_cell=2)]
    for height in (0.8, 1.1)[:layers]:
        parts.append(surface_points(flat, rows=4, cols=4, cell_size=2.0, per_cell=2,
                                    classification=3, height=height))
    pc = merge_points(*parts)
    config = PipelineConfig(undergrowthboxsize=1, greendetectsize=0)

    result = classify_vegetation(pc, *_layers(pc, config), config)
    assert np.all(result.undergrowth.data == expected)
