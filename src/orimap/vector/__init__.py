# src/orimap/vector/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The vector subpackage converts contour and cliff features into in-memory vector layers
for the export collaborators.
"""

# Data structure
from .layer import (
    Vector
)

# Feature conversion
from .features import (
    contours_to_vector,
    cliffs_to_vector,
    select_kinds
)

__all__ = [
    # Data structure
    "Vector",

    # Feature conversion
    "contours_to_vector",
    "cliffs_to_vector",
    "select_kinds",
]
