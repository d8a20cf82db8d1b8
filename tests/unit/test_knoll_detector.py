# tests/unit/test_knoll_detector.py

import pytest
import numpy as np

from orimap.config import PipelineConfig
from orimap.terrain import KnollPin, detect_knolls, flatten_gentle, raise_knolls

from helpers import make_grid

@pytest.fixture
def bump_grid():
    """41x41 grid at 1 m: a 1.2 m gaussian knoll on 1 m high flat ground."""
    r, c = np.mgrid[0:41, 0:41]
    d2 = (r - 20) ** 2 + (c - 20) ** 2
    return make_grid(1.0 + 1.2 * np.exp(-d2 / 32.0))

@pytest.fixture
def knoll_config():
    return PipelineConfig(cell_size=1.0, formline=0, contour_interval=5.0, detect_knolls=True)

def test_flat_ground_has_no_knolls(knoll_config):
    assert detect_knolls(make_grid(np.full((20, 20), 3.0)), knoll_config) == []

def test_low_knoll_is_detected(bump_grid, knoll_config):
    pins = detect_knolls(bump_grid, knoll_config)

    assert len(pins) == 1
    pin = pins[0]
    assert isinstance(pin, KnollPin)
    assert pin.level == pytest.approx(1.5)
    assert pin.top == pytest.approx(2.1)
    assert np.allclose(pin.center, [20.5, 20.5], atol=0.5)
    assert np.array_equal(pin.vertices[0], pin.vertices[-1])

def test_knoll_is_raised_above_half_interval(bump_grid, knoll_config):
    pins = detect_knolls(bump_grid, knoll_config)
    raised = raise_knolls(bump_grid, pins, knoll_config)

    assert raised.same_grid(bump_grid)
    assert raised.data.max() > 2.5
    assert raised.data[20, 20] > bump_grid.data[20, 20] + 1.0
    assert raised.data[0, 0] == bump_grid.data[0, 0]
    # the input grid is left as it was
    assert bump_grid.data.max() == pytest.approx(2.2)

def test_raise_without_knolls_only_flattens(bump_grid, knoll_config):
    raised = raise_knolls(bump_grid, [], knoll_config)
    assert np.allclose(raised.data, flatten_gentle(bump_grid.data))

def test_flatten_keeps_even_ground(plane_factory):
    assert np.allclose(flatten_gentle(np.full((9, 9), 4.0)), 4.0)

    gentle = plane_factory(0.05).data
    assert np.allclose(flatten_gentle(gentle), gentle)

    steep = plane_factory(1.0).data
    assert np.array_equal(flatten_gentle(steep), steep)

def test_flatten_evens_out_a_spike():
    data = np.zeros((9, 9))
    data[4, 4] = 1.0
    out = flatten_gentle(data)

    assert 0.0 < out[4, 4] < 1.0
    assert np.array_equal(out[:2], data[:2])
