"""
Vigil — Shared Signal Module
=============================
Centralized per-frame signal logic for the Vigil liveness engine.

Contains 5 Components:
  A) Geometry: point distance
  B) EAR: eye aspect ratio with fixed sensitivity gain
  C) RollingBaselineTracker: bounded EAR history + open-eye baseline
  D) BlinkDetector: falling-edge blink counting on the shared history
  E) MovementEstimator: nose-tip jitter over a bounded window

Also:
  - config.yaml loading and module constants
  - setup_logger for console logging

═══════════════════════════════════════════════════════════
SIGNAL CONVENTIONS:
  1. EAR is computed on PIXEL coordinates and multiplied by 1.5
  2. The baseline is the mean of the 3 highest recent EARs
  3. A blink is counted only on the open -> closed transition
  4. Display eye-state uses a coarser threshold than blink counting
═══════════════════════════════════════════════════════════
"""

from __future__ import annotations

import math
import os
import logging
from collections import deque
from typing import Optional, Sequence

import numpy as np
import yaml

from vigil_types import (
    BlinkState,
    EARSample,
    EyeState,
    MalformedLandmarks,
    Point2D,
)


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, 'config.yaml')


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml."""
    target = path or _config_path
    with open(target, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


CONFIG = load_config()


# ===================================================================
# Constants (loaded from config.yaml, overridable at runtime)
# ===================================================================

EAR_GAIN              = CONFIG['ear']['gain']
HISTORY_SIZE          = CONFIG['ear']['history_size']
BASELINE_TOP_K        = CONFIG['ear']['baseline_top_k']

BLINK_RATIO           = CONFIG['blink']['blink_ratio']
DISPLAY_RATIO         = CONFIG['blink']['display_ratio']

POSITION_HISTORY_SIZE = CONFIG['movement']['history_size']

LEFT_EYE       = CONFIG['landmarks']['left_eye']
RIGHT_EYE      = CONFIG['landmarks']['right_eye']
NOSE_REFERENCE = CONFIG['landmarks']['nose_reference']

MESH_LEFT_EYE  = CONFIG['landmarks']['mesh_left_eye']
MESH_RIGHT_EYE = CONFIG['landmarks']['mesh_right_eye']
MESH_NOSE_TIP  = CONFIG['landmarks']['mesh_nose_tip']


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured logger for Vigil modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


_log = setup_logger('VigilSignals')


# ===================================================================
# COMPONENT A: GEOMETRY
# ===================================================================

def distance(a, b) -> float:
    """Euclidean distance between two points.

    Accepts Point2D, objects with .x/.y, or (x, y) pairs / NumPy rows.
    """
    pa = Point2D.of(a)
    pb = Point2D.of(b)
    return math.hypot(pb.x - pa.x, pb.y - pa.y)


# ===================================================================
# COMPONENT B: EYE ASPECT RATIO
# ===================================================================

def validate_eye(eye: Sequence) -> tuple[Point2D, ...]:
    """Normalize an eye landmark set to 6 Point2D.

    Raises:
        MalformedLandmarks: if the set does not hold exactly 6 points
            or a point has no usable coordinates.
    """
    if eye is None:
        raise MalformedLandmarks("eye landmarks missing")
    try:
        points = tuple(Point2D.of(p) for p in eye)
    except (IndexError, TypeError, ValueError) as e:
        raise MalformedLandmarks(f"unreadable eye landmark: {e}") from e
    if len(points) != 6:
        raise MalformedLandmarks(f"expected 6 eye landmarks, got {len(points)}")
    return points


def compute_ear(eye: Sequence, gain: float = EAR_GAIN) -> float:
    """Compute the Eye Aspect Ratio of one eye.

    EAR = ((||p1-p5|| + ||p2-p4||) / (2 * ||p0-p3||)) * gain

    The gain (1.5) amplifies sensitivity to vertical closure. It is a
    tuning constant, not part of the geometric definition.

    Args:
        eye: 6 points in anatomical order (0,3 corners; 1,2 upper lid;
             4,5 lower lid).
        gain: Sensitivity multiplier.

    Returns:
        EAR value. 0.0 when the corners coincide or the landmark set
        is malformed; a single bad frame must not abort a session.
    """
    try:
        p = validate_eye(eye)
    except MalformedLandmarks as e:
        _log.debug("EAR degraded to 0: %s", e)
        return 0.0

    v1 = distance(p[1], p[5])
    v2 = distance(p[2], p[4])
    h = distance(p[0], p[3])

    if h > 0:
        return ((v1 + v2) / (2.0 * h)) * gain
    return 0.0


def both_eyes_ear(left: Sequence, right: Sequence, gain: float = EAR_GAIN) -> float:
    """Arithmetic mean of the left and right EAR."""
    return (compute_ear(left, gain) + compute_ear(right, gain)) / 2.0


# ===================================================================
# COMPONENT C: ROLLING BASELINE
# ===================================================================

class RollingBaselineTracker:
    """Bounded EAR history with a dynamic "eyes-open" baseline.

    The highest recent values are assumed to come from open-eye frames,
    so the baseline adapts per subject and per lighting without any
    calibration step.
    """

    def __init__(self, size: int = HISTORY_SIZE, top_k: int = BASELINE_TOP_K):
        self.size = size
        self.top_k = top_k
        self._history: deque[EARSample] = deque(maxlen=size)
        self._seq = 0

    def push(self, sample: float) -> None:
        """Append one EAR sample; the oldest is evicted beyond `size`."""
        self._history.append(EARSample(float(sample), self._seq))
        self._seq += 1

    def baseline(self) -> float:
        """Mean of the `top_k` largest samples (fewer if history is short).

        Returns 0.0 for an empty history.
        """
        if not self._history:
            return 0.0
        top = sorted((s.value for s in self._history), reverse=True)[:self.top_k]
        return float(np.mean(top))

    @property
    def samples(self) -> list[EARSample]:
        return list(self._history)

    @property
    def values(self) -> list[float]:
        return [s.value for s in self._history]

    @property
    def last(self) -> Optional[float]:
        return self._history[-1].value if self._history else None

    @property
    def previous(self) -> Optional[float]:
        """Sample immediately preceding the latest one."""
        return self._history[-2].value if len(self._history) >= 2 else None

    def reset(self) -> None:
        self._history.clear()
        self._seq = 0

    def __len__(self) -> int:
        return len(self._history)


# ===================================================================
# COMPONENT D: BLINK DETECTION
# ===================================================================

class BlinkDetector:
    """Falling-edge blink counter over a shared RollingBaselineTracker.

    The tracker is injected so the baseline and the blink edge see
    one history. observe() is the only place samples are pushed.

    Two thresholds, independently tunable:
      - blink edge:  baseline * 0.65 (counting)
      - display:     baseline * 0.75 (instantaneous OPEN/CLOSED only)
    """

    def __init__(
        self,
        tracker: RollingBaselineTracker,
        blink_ratio: float = BLINK_RATIO,
        display_ratio: float = DISPLAY_RATIO,
    ):
        self.tracker = tracker
        self.blink_ratio = blink_ratio
        self.display_ratio = display_ratio
        self.state = BlinkState()

    @property
    def count(self) -> int:
        return self.state.count

    def blink_threshold(self) -> float:
        return self.tracker.baseline() * self.blink_ratio

    def display_threshold(self) -> float:
        return self.tracker.baseline() * self.display_ratio

    def observe(self, current_ear: float) -> int:
        """Record one EAR sample and return the cumulative blink count.

        A blink is counted when the previous sample was above the blink
        threshold and the current one is below it. Sustained closure
        counts once.
        """
        self.tracker.push(current_ear)
        threshold = self.blink_threshold()

        if len(self.tracker) >= 3:
            prev = self.tracker.previous
            if prev > threshold and current_ear < threshold:
                self.state.count += 1
                _log.debug(
                    "Blink #%d — prev=%.3f cur=%.3f thresh=%.3f",
                    self.state.count, prev, current_ear, threshold,
                )

        self.state.last_ear = current_ear
        return self.state.count

    def eye_state(self, current_ear: float) -> EyeState:
        """Display classification; not used for counting."""
        if current_ear < self.display_threshold():
            return EyeState.CLOSED
        return EyeState.OPEN

    def reset(self) -> None:
        self.state = BlinkState()


# ===================================================================
# COMPONENT E: MOVEMENT ESTIMATION
# ===================================================================

class MovementEstimator:
    """Average per-step jitter of a facial reference point (nose tip).

    Manhattan step lengths are summed over the window and divided by
    the window length. Back-and-forth motion with zero net displacement
    still scores, which is what separates a live head from a photo.
    """

    def __init__(self, size: int = POSITION_HISTORY_SIZE):
        self.size = size
        self._positions: deque[Point2D] = deque(maxlen=size)

    def observe(self, reference_point) -> float:
        """Record a reference point and return the average movement.

        A missing point records nothing and yields 0.0.
        """
        if reference_point is None:
            return 0.0
        try:
            point = Point2D.of(reference_point)
        except (IndexError, TypeError, ValueError) as e:
            _log.debug("Movement degraded to 0: unreadable reference point (%s)", e)
            return 0.0

        self._positions.append(point)
        if len(self._positions) < 2:
            return 0.0

        pts = list(self._positions)
        total = sum(
            abs(cur.x - prev.x) + abs(cur.y - prev.y)
            for prev, cur in zip(pts, pts[1:])
        )
        return total / len(pts)

    @property
    def positions(self) -> list[Point2D]:
        return list(self._positions)

    def reset(self) -> None:
        self._positions.clear()

    def __len__(self) -> int:
        return len(self._positions)
