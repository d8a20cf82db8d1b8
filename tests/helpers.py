# tests/helpers.py

import numpy as np
from orimap.lidar.layer import PointCloud
from orimap.raster.layer import Grid, create_affine_transform

def make_grid(data: np.ndarray, cell_size: float = 1.0) -> Grid:
    """Wraps an array in a grid whose lower-left corner sits at the origin."""
    data = np.asarray(data, dtype=np.float64)
    transform = create_affine_transform(0.0, data.shape[0] * cell_size, cell_size)
    return Grid(data, transform)

def surface_points(
    surface,
    rows: int,
    cols: int,
    cell_size: float = 1.0,
    per_cell: int = 1,
    classification: int = 2,
    height: float = 0.0,
    return_number: int = 1,
    number_of_returns: int = 1
) -> dict:
    """
    Point columns sampled on a regular lattice, per_cell points per cell.

    surface(x, y) gives the ground elevation, height is added on top of it.
    """
    offsets = (np.arange(per_cell) + 0.5) / per_cell
    xs = (np.arange(cols)[:, None] + offsets[None, :]).ravel() * cell_size
    ys = (np.arange(rows)[:, None] + offsets[None, :]).ravel() * cell_size
    gx, gy = np.meshgrid(xs, ys)
    x, y = gx.ravel(), gy.ravel()
    n = len(x)
    return {
        "x": x,
        "y": y,
        "z": surface(x, y) + height,
        "classification": np.full(n, classification),
        "return_number": np.full(n, return_number),
        "number_of_returns": np.full(n, number_of_returns),
    }

def merge_points(*parts: dict) -> PointCloud:
    keys = ["x", "y", "z", "classification", "return_number", "number_of_returns"]
    return PointCloud.from_arrays(**{k: np.concatenate([p[k] for p in parts]) for k in keys})

def assert_grid_match(g1: Grid, g2: Grid):
    """Strictly verify two grids share the exact same extent."""
    assert g1.shape == g2.shape, \
        f"Shape mismatch: {g1.shape} != {g2.shape}"

    assert np.allclose(np.array(g1.transform), np.array(g2.transform), atol=1e-9), \
        "Transform mismatch (cell alignment error)"

def on_frame(point: np.ndarray, grid: Grid, tol: float = 1e-6) -> bool:
    """True when a world coordinate lies on the outermost ring of cell centres."""
    xs, ys = grid.cell_centers()
    x, y = point
    inside_x = xs[0] - tol <= x <= xs[-1] + tol
    inside_y = ys[-1] - tol <= y <= ys[0] + tol
    on_x = abs(x - xs[0]) < tol or abs(x - xs[-1]) < tol
    on_y = abs(y - ys[0]) < tol or abs(y - ys[-1]) < tol
    return inside_x and inside_y and (on_x or on_y)
