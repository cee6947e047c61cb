"""
Engine Contract

Single source of truth for scales, tolerances and drawing sizes used across the
markup store, the snapping engine and the export transforms. All modules should
import from here instead of hardcoding.
"""

from __future__ import annotations

# Coordinates are document-native (PDF points * BASE_RENDER_SCALE) unless noted

# Coordinate model
BASE_RENDER_SCALE = 1.5  # native units per PDF point
DEFAULT_ZOOM = 100.0  # percent
MIN_ZOOM = 25.0  # percent
MAX_ZOOM = 400.0  # percent

# Snapping
SNAP_RADIUS = 10.0  # native units
GRID_SIZE = 20.0  # native units

# History
MAX_HISTORY = 50  # undoable steps

# Vector index (PDF user-space units)
MIN_LINE_LENGTH = 3.0
MAX_LINES_PER_PAGE = 5000
CURVE_SAMPLE_POINTS = 4
MAX_INTERSECTIONS = 1000
MAX_INTERSECTION_LINES = 500  # only the first N segments are intersected
POINT_KEY_PRECISION = 1  # decimals used to deduplicate endpoints/intersections
PARALLEL_EPSILON = 1e-4

# Drawing recipes (native units)
COUNT_MARKER_RADIUS = 12.0
COUNT_LABEL_SIZE = 10.0
ARROW_LENGTH = 15.0
ARROW_ANGLE_DEG = 30.0
LABEL_FONT_SIZE = 10.0
LABEL_OFFSET = 10.0
STAMP_FONT_SIZE = 14.0
STAMP_BOX_HEIGHT = 30.0
STAMP_CHAR_WIDTH = 12.0
STAMP_PADDING = 5.0
DEFAULT_FONT_SIZE = 12.0
HIGHLIGHT_COLOR = "#ffff00"
HIGHLIGHT_OPACITY = 0.3

# Measurement defaults
COUNT_UNIT = "ea"
DEFAULT_UNIT = "ft"


def area_unit(unit: str) -> str:
    """Return the squared unit label for a linear unit."""
    return f"sq {unit}"
