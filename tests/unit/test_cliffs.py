# tests/unit/test_cliffs.py

import pytest
import numpy as np

from orimap.config import PipelineConfig
from orimap.terrain import CliffKind, detect_cliffs, slope_grid, trace_skeleton

from helpers import make_grid

def test_slope_on_plane(plane_factory):
    slope, direction = slope_grid(plane_factory(0.5))
    assert np.allclose(slope[:, 1:-1], 0.5)
    assert np.allclose(slope[:, [0, -1]], 0.25)
    # rising eastward
    assert np.allclose(direction[:, 1:-1], 0.0)

def test_high_step_is_impassable(step_factory):
    result = detect_cliffs(step_factory(5.0), PipelineConfig(cell_size=1.0))

    assert result.type2
    assert not result.type1
    assert not result.type1_mask.data.any()
    assert all(c.kind == CliffKind.IMPASSABLE for c in result.type2)
    # the cliff follows the step, close to x = 15
    for cliff in result.type2:
        assert np.all(np.abs(cliff.vertices[:, 0] - 15.0) <= 1.0)

def test_low_step_is_dropped_as_flat(step_factory):
    result = detect_cliffs(step_factory(3.0), PipelineConfig(cell_size=1.0))
    assert result.type1_mask.data.any()
    assert not result.type1
    assert not result.type2

def test_low_step_is_kept_with_lower_flat_place(step_factory):
    result = detect_cliffs(step_factory(3.0), PipelineConfig(cell_size=1.0, cliffflatplace=2.0))
    assert result.type1
    assert all(c.kind == CliffKind.ERASABLE for c in result.type1)
    assert max(c.length for c in result.type1) > 20.0

def test_short_cliffs_are_dropped(step_factory):
    config = PipelineConfig(cell_size=1.0, cliffflatplace=2.0, cliffnosmallciffs=100.0)
    assert not detect_cliffs(step_factory(3.0), config).type1

def test_masks_are_disjoint():
    data = np.zeros((30, 30))
    data[:, 10:] += 3.0
    data[:, 20:] += 5.0
    result = detect_cliffs(make_grid(data), PipelineConfig(cell_size=1.0))

    type1 = result.type1_mask.data
    type2 = result.type2_mask.data
    assert type1.any() and type2.any()
    assert not (type1 & type2).any()
    assert result.slope.same_grid(result.type1_mask)

def test_trace_line():
    skeleton = np.zeros((5, 5), dtype=bool)
    skeleton[2, :] = True
    paths = trace_skeleton(skeleton)
    assert paths == [[(2, 0), (2, 1), (2, 2), (2, 3), (2, 4)]]

def test_trace_corner():
    skeleton = np.zeros((5, 5), dtype=bool)
    skeleton[2, :3] = True
    skeleton[2:, 2] = True
    paths = trace_skeleton(skeleton)
    assert paths == [[(2, 0), (2, 1), (2, 2), (3, 2), (4, 2)]]

def test_trace_loop():
    skeleton = np.zeros((5, 5), dtype=bool)
    skeleton[1:4, 1:4] = True
    skeleton[2, 2] = False
    paths = trace_skeleton(skeleton)

    assert len(paths) == 1
    assert len(paths[0]) == 9
    assert paths[0][0] == paths[0][-1]

def test_flat_ground_has_no_cliffs():
    result = detect_cliffs(make_grid(np.zeros((5, 5))), PipelineConfig(cell_size=1.0))
    assert result.type1 == [] and result.type2 == []
    assert result.slope.data.max() == pytest.approx(0.0)
