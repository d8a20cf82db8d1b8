# tests/conftest.py

import pytest
import numpy as np
import laspy

from orimap.config import PipelineConfig
from orimap.lidar.layer import PointCloud

from helpers import make_grid, surface_points, merge_points

def cone_surface(x, y, center=30.5, radius=30.0, peak=12.5):
    d = np.hypot(x - center, y - center)
    return np.clip(peak * (1.0 - d / radius), 0.0, None)

@pytest.fixture
def contour_config():
    """Plain contours every 5 m on 1 m cells."""
    return PipelineConfig(cell_size=1.0, formline=0, contour_interval=5.0)

@pytest.fixture
def cone_grid():
    """
    61x61 grid at 1 m with a single cone peaking at 12.5 m in the centre
    and falling to 0 at a radius of 30 m.
    """
    centers = np.arange(61) + 0.5
    x, y = np.meshgrid(centers, centers[::-1])
    return make_grid(cone_surface(x, y))

@pytest.fixture
def bowl_grid():
    """41x41 grid at 1 m with a conical depression, 1 m deep at the centre."""
    centers = np.arange(41) + 0.5
    x, y = np.meshgrid(centers, centers[::-1])
    return make_grid(1.0 + 0.4 * np.hypot(x - 20.5, y - 20.5))

@pytest.fixture
def plane_factory():
    """Returns a function building an eastward rising plane z = slope * x."""
    def _create(slope: float, rows: int = 20, cols: int = 20, cell_size: float = 1.0, base: float = 0.0):
        centers = (np.arange(cols) + 0.5) * cell_size
        row = base + slope * centers
        return make_grid(np.tile(row, (rows, 1)), cell_size)
    return _create

@pytest.fixture
def step_factory():
    """Returns a function building a north-south escarpment of the given height."""
    def _create(height: float, rows: int = 30, cols: int = 30, at: int = 15):
        data = np.zeros((rows, cols))
        data[:, at:] = height
        return make_grid(data)
    return _create

@pytest.fixture
def flat_cloud():
    """10x10 cells of 2 m, 4 ground returns per cell, all at 100 m."""
    pts = surface_points(lambda x, y: np.full_like(x, 100.0), rows=10, cols=10, cell_size=2.0, per_cell=2)
    return merge_points(pts)

@pytest.fixture
def cone_cloud():
    """One ground return at the centre of every 1 m cell of the cone."""
    return merge_points(surface_points(cone_surface, rows=61, cols=61))

@pytest.fixture
def forest_cloud():
    """
    20x20 cells of 2 m on a gentle slope. The western half carries 2 m high vegetation
    above the ground returns, the eastern half is open.
    """
    slope = lambda x, y: 50.0 + 0.05 * x
    ground = surface_points(slope, rows=20, cols=20, cell_size=2.0, per_cell=2)
    vegetation = surface_points(
        slope, rows=20, cols=10, cell_size=2.0, per_cell=2,
        classification=4, height=2.0, return_number=1, number_of_returns=2
    )
    return merge_points(ground, vegetation)

@pytest.fixture
def las_factory(tmp_path):
    """Returns a function writing a PointCloud to a LAS 1.2 file."""
    def _create(pc: PointCloud, name: str = "tile.las"):
        header = laspy.LasHeader(point_format=3, version="1.2")
        header.scales = np.array([0.001, 0.001, 0.001])
        header.offsets = np.array([np.floor(pc.min_x), np.floor(pc.min_y), 0.0])
        las = laspy.LasData(header)
        las.x = pc.x
        las.y = pc.y
        las.z = pc.z
        las.classification = pc.classification
        las.return_number = pc.return_number
        las.number_of_returns = pc.number_of_returns
        path = tmp_path / name
        las.write(str(path))
        return path
    return _create
