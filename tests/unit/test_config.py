# tests/unit/test_config.py

import dataclasses

import pytest

from orimap.config import PipelineConfig, Zone, ThresholdBand, DEFAULT_ZONES
from orimap.exceptions import ConfigurationError

def test_defaults_are_valid():
    config = PipelineConfig()
    assert config.zones == DEFAULT_ZONES
    assert config.greenshades[0] == 0.2
    assert config.formline == 2

def test_config_is_immutable():
    config = PipelineConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.cell_size = 1.0

def test_from_mapping_parses_ini_values():
    config = PipelineConfig.from_mapping({
        "zone1": "1.0|2.65|99|0.7",
        "zone2": "2.65|3.4|99|0.1",
        "thresold1": "0|5|0.2",
        "thresold2": "5|99|0.3",
        "greenshades": "0.1|0.5|1.0",
        "yellowthresold": "0.8",
        "remove_touching_contours": "1",
        "medianboxsize": "5",
        "formline": "0",
        "some_unknown_key": "ignored",
    })
    assert config.zones == (Zone(1.0, 2.65, 99.0, 0.7), Zone(2.65, 3.4, 99.0, 0.1))
    assert config.thresholds == (ThresholdBand(0.0, 5.0, 0.2), ThresholdBand(5.0, 99.0, 0.3))
    assert config.greenshades == (0.1, 0.5, 1.0)
    assert config.yellowthreshold == 0.8
    assert config.remove_touching_contours is True
    assert config.medianboxsize == 5
    assert config.formline == 0

def test_from_mapping_orders_zones_by_number():
    config = PipelineConfig.from_mapping({
        "zone2": "3|4|99|0.5",
        "zone1": "1|3|99|1",
    })
    assert [z.low for z in config.zones] == [1.0, 3.0]

def test_from_mapping_rejects_malformed_zone():
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_mapping({"zone1": "1.0|2.65|99"})

def test_from_mapping_rejects_non_numeric_value():
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_mapping({"cliff1": "steep"})

@pytest.mark.parametrize("changes", [
    {"zones": ()},
    {"zones": (Zone(3.0, 1.0, 99.0, 1.0),)},
    {"thresholds": (ThresholdBand(0.0, 3.0, 0.1), ThresholdBand(4.0, 99.0, 0.1))},
    {"thresholds": (ThresholdBand(0.0, 3.0, 0.0),)},
    {"greenshades": (0.5, 0.2)},
    {"greenshades": ()},
    {"thinfactor": 0.0},
    {"thinfactor": 1.5},
    {"formline": 3},
    {"knolls": 1.5},
    {"medianboxsize": -1},
    {"cell_size": 0.0},
    {"contour_interval": -5.0},
    {"cliff1": 3.0, "cliff2": 2.0},
    {"terrain": "alpine"},
])
def test_invalid_values_raise(changes):
    with pytest.raises(ConfigurationError):
        PipelineConfig(**changes)

def test_repeated_shade_cut_points_are_allowed():
    config = PipelineConfig(greenshades=(0.2, 0.5, 99, 99))
    assert config.greenshades == (0.2, 0.5, 99.0, 99.0)

def test_replace_validates():
    config = PipelineConfig()
    assert config.replace(cell_size=1.0).cell_size == 1.0
    with pytest.raises(ConfigurationError):
        config.replace(formline=5)

def test_dash_units_follow_scalefactor():
    config = PipelineConfig(dashlength=60, gaplength=12, scalefactor=1.0)
    assert config.dash_distance == pytest.approx(25.4)
    assert config.gap_distance == pytest.approx(5.08)
    assert config.replace(scalefactor=2.0).dash_distance == pytest.approx(50.8)

def test_from_mapping_reads_terrain_and_knoll_detection():
    config = PipelineConfig.from_mapping({"terrain": " Flat ", "detect_knolls": "1"})
    assert config.terrain == "flat"
    assert config.detect_knolls is True
    assert PipelineConfig().terrain == "relief"
    assert PipelineConfig().detect_knolls is False
