# src/orimap/terrain/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The terrain subpackage derives cartographic features from the ground grid:
contours, form-lines, knolls, depressions and cliffs.
"""

# Contours
from .contours import (
    ContourKind,
    Contour,
    nudge_levels,
    trace_isolines,
    smooth_polyline,
    remove_touching,
    mark_crowded_dots,
    generate_contours
)

# Knolls and depressions
from .knolls import (
    LoopInfo,
    steepness_grid,
    analyze_loop,
    is_distinct,
    clear_dots
)

# Knolls below the contour interval
from .knoll_detector import (
    KnollPin,
    detect_knolls,
    flatten_gentle,
    raise_knolls
)

# Form-lines
from .formlines import (
    dash_pattern,
    formline_pieces
)

# Cliffs
from .cliffs import (
    CliffKind,
    Cliff,
    CliffResult,
    slope_grid,
    cliff_masks,
    trace_skeleton,
    detect_cliffs
)

__all__ = [
    # Contours
    "ContourKind",
    "Contour",
    "nudge_levels",
    "trace_isolines",
    "smooth_polyline",
    "remove_touching",
    "mark_crowded_dots",
    "generate_contours",

    # Knolls and depressions
    "LoopInfo",
    "steepness_grid",
    "analyze_loop",
    "is_distinct",
    "clear_dots",

    # Knolls below the contour interval
    "KnollPin",
    "detect_knolls",
    "flatten_gentle",
    "raise_knolls",

    # Form-lines
    "dash_pattern",
    "formline_pieces",

    # Cliffs
    "CliffKind",
    "Cliff",
    "CliffResult",
    "slope_grid",
    "cliff_masks",
    "trace_skeleton",
    "detect_cliffs",
]
