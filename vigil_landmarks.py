"""
Vigil — Landmark Layout Adapter
================================
Converts a detector's landmark array (pixel coordinates) plus its
expression output into the DetectionRecord the liveness pipeline
consumes.

Two layouts are supported:

  68-point iBUG           MediaPipe 478-point mesh
  -------------------     ------------------------------
  left eye   36-41        33, 160, 158, 133, 153, 144
  right eye  42-47        362, 385, 387, 263, 373, 380
  reference  27           1 (nose tip)

Short or unreadable arrays are not rejected here. The affected eye
comes back empty (EAR 0) and the nose comes back None (movement 0),
so one bad frame degrades instead of aborting the session.
"""

from __future__ import annotations

from typing import Optional, Sequence

from vigil_types import DetectionRecord, Expressions, Point2D
from vigil_utils_core import (
    LEFT_EYE,
    MESH_LEFT_EYE,
    MESH_NOSE_TIP,
    MESH_RIGHT_EYE,
    NOSE_REFERENCE,
    RIGHT_EYE,
    setup_logger,
)


_log = setup_logger('VigilLandmarks')


def _pick(points: Sequence, indices: Sequence[int]) -> tuple[Point2D, ...]:
    try:
        return tuple(Point2D.of(points[i]) for i in indices)
    except (IndexError, TypeError, ValueError):
        return ()


def detection_from_points(
    points: Sequence,
    left_eye: Sequence[int],
    right_eye: Sequence[int],
    nose_index: int,
    expressions: Optional[Expressions] = None,
) -> DetectionRecord:
    """Pick eyes and reference point out of a full landmark array."""
    left = _pick(points, left_eye)
    right = _pick(points, right_eye)
    nose_pts = _pick(points, [nose_index])
    nose = nose_pts[0] if nose_pts else None

    if not left or not right or nose is None:
        _log.debug(
            "Partial landmark set — left=%d right=%d nose=%s",
            len(left), len(right), nose is not None,
        )

    return DetectionRecord(
        left_eye=left,
        right_eye=right,
        nose=nose,
        expressions=expressions or Expressions(),
    )


def detection_from_68(points: Sequence, expressions: Optional[dict] = None) -> DetectionRecord:
    """Build a DetectionRecord from 68 iBUG landmarks.

    Args:
        points: (68, 2) array, list of (x, y) pairs, or objects with .x/.y.
        expressions: Mapping with at least happy / surprised / neutral.
    """
    return detection_from_points(
        points, LEFT_EYE, RIGHT_EYE, NOSE_REFERENCE,
        Expressions.from_mapping(expressions),
    )


def expressions_from_blendshapes(blendshapes: Optional[list]) -> Expressions:
    """Map MediaPipe blendshape categories onto happy / surprised / neutral.

    happy     = mean of mouthSmileLeft / mouthSmileRight
    surprised = max of browInnerUp / jawOpen
    neutral   = _neutral
    """
    if not blendshapes:
        return Expressions()
    scores = {}
    for category in blendshapes:
        name = getattr(category, "category_name", None)
        if name:
            scores[name] = float(category.score)

    happy = (scores.get("mouthSmileLeft", 0.0) + scores.get("mouthSmileRight", 0.0)) / 2.0
    surprised = max(scores.get("browInnerUp", 0.0), scores.get("jawOpen", 0.0))
    return Expressions(happy=happy, surprised=surprised, neutral=scores.get("_neutral", 0.0))


def detection_from_mesh(points: Sequence, blendshapes: Optional[list] = None) -> DetectionRecord:
    """Build a DetectionRecord from a 478-point MediaPipe mesh in pixels."""
    return detection_from_points(
        points, MESH_LEFT_EYE, MESH_RIGHT_EYE, MESH_NOSE_TIP,
        expressions_from_blendshapes(blendshapes),
    )
