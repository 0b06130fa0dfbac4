"""
Vigil -- Signal Utils Test Suite
=================================
Covers: distance, EAR, rolling baseline, blink detection,
movement estimation.
"""

from __future__ import annotations

import math
import sys
from pathlib import Path

import numpy as np
import pytest

# Project root
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from vigil_types import EyeState, MalformedLandmarks, Point2D
from vigil_utils_core import (
    BLINK_RATIO,
    DISPLAY_RATIO,
    EAR_GAIN,
    BlinkDetector,
    MovementEstimator,
    RollingBaselineTracker,
    both_eyes_ear,
    compute_ear,
    distance,
    validate_eye,
)


# ── Helpers ───────────────────────────────────────────────────

class _MockLandmark:
    """Simulate a detector landmark with .x, .y attributes."""
    def __init__(self, x: float, y: float):
        self.x = x
        self.y = y


def _make_eye(ear_target: float = 0.3, h: float = 30.0, ox: float = 100.0, oy: float = 200.0):
    """6 pixel points that produce `ear_target` after the 1.5 gain.

    EAR = (v1 + v2) / (2h) * 1.5 with v1 = v2 = v  ->  v = ear * h / 1.5
    """
    v = ear_target * h / EAR_GAIN
    return [
        Point2D(ox, oy),                      # 0 -- outer corner
        Point2D(ox + h * 0.33, oy - v / 2),   # 1 -- upper lid
        Point2D(ox + h * 0.66, oy - v / 2),   # 2 -- upper lid
        Point2D(ox + h, oy),                  # 3 -- inner corner
        Point2D(ox + h * 0.66, oy + v / 2),   # 4 -- lower lid
        Point2D(ox + h * 0.33, oy + v / 2),   # 5 -- lower lid
    ]


# ═══════════════════════════════════════════════════════════════
# Geometry
# ═══════════════════════════════════════════════════════════════

def test_distance_pythagorean():
    assert distance(Point2D(0, 0), Point2D(3, 4)) == pytest.approx(5.0)


def test_distance_accepts_mixed_point_formats():
    """Point2D, .x/.y objects, tuples and NumPy rows all work."""
    a = _MockLandmark(1.0, 1.0)
    b = np.array([4.0, 5.0])
    assert distance(a, b) == pytest.approx(5.0)
    assert distance((1, 1), Point2D(4, 5)) == pytest.approx(5.0)


# ═══════════════════════════════════════════════════════════════
# EAR
# ═══════════════════════════════════════════════════════════════

def test_ear_matches_target_value():
    assert compute_ear(_make_eye(0.30)) == pytest.approx(0.30)
    assert compute_ear(_make_eye(0.05)) == pytest.approx(0.05)


def test_ear_applies_gain():
    """Raw geometric EAR times 1.5."""
    eye = _make_eye(0.30)
    assert compute_ear(eye, gain=1.0) == pytest.approx(0.20)


def test_ear_zero_when_corners_coincide():
    eye = _make_eye(0.30)
    eye[3] = Point2D(eye[0].x, eye[0].y)
    assert compute_ear(eye) == 0


def test_ear_invariant_under_scaling_and_translation():
    base = compute_ear(_make_eye(0.27, h=30.0, ox=100, oy=200))
    scaled = [Point2D(p.x * 2.0, p.y * 2.0) for p in _make_eye(0.27, h=30.0, ox=100, oy=200)]
    moved = _make_eye(0.27, h=30.0, ox=350, oy=12)

    assert compute_ear(scaled) == pytest.approx(base)
    assert compute_ear(moved) == pytest.approx(base)


@pytest.mark.parametrize("eye", [
    [],
    [Point2D(0, 0)] * 5,
    [Point2D(0, 0)] * 7,
    None,
    [(1, 2), (3,), (4, 5), (6, 7), (8, 9), (1, 1)],
    [(math.nan, 2), (3, 3), (4, 5), (6, 7), (8, 9), (1, 1)],
    [Point2D(0, 0), Point2D(10, math.inf)] + [Point2D(5, 5)] * 4,
])
def test_ear_malformed_landmarks_degrade_to_zero(eye):
    assert compute_ear(eye) == 0.0


def test_validate_eye_raises_on_wrong_length():
    with pytest.raises(MalformedLandmarks):
        validate_eye([Point2D(0, 0)] * 4)


def test_both_eyes_ear_is_mean():
    left = _make_eye(0.20)
    right = _make_eye(0.40, ox=300)
    assert both_eyes_ear(left, right) == pytest.approx(0.30)


def test_both_eyes_ear_one_malformed_eye_halves():
    assert both_eyes_ear(_make_eye(0.30), []) == pytest.approx(0.15)


# ═══════════════════════════════════════════════════════════════
# Rolling baseline
# ═══════════════════════════════════════════════════════════════

def test_baseline_empty_is_zero():
    assert RollingBaselineTracker().baseline() == 0.0


def test_baseline_short_history_averages_present_samples():
    tracker = RollingBaselineTracker()
    tracker.push(0.2)
    assert tracker.baseline() == pytest.approx(0.2)
    tracker.push(0.4)
    assert tracker.baseline() == pytest.approx(0.3)


def test_baseline_is_mean_of_top_three():
    tracker = RollingBaselineTracker()
    for v in [0.10, 0.31, 0.05, 0.29, 0.30, 0.12]:
        tracker.push(v)
    assert tracker.baseline() == pytest.approx((0.31 + 0.30 + 0.29) / 3)


def test_history_never_exceeds_ten_fifo():
    tracker = RollingBaselineTracker()
    for i in range(11):
        tracker.push(float(i))
    assert len(tracker) == 10
    assert tracker.values == [float(i) for i in range(1, 11)]

    for i in range(11, 30):
        tracker.push(float(i))
    assert len(tracker) == 10
    assert tracker.values[0] == 20.0


def test_history_samples_keep_sequence_order():
    tracker = RollingBaselineTracker()
    for v in [0.3, 0.2, 0.1]:
        tracker.push(v)
    seqs = [s.seq for s in tracker.samples]
    assert seqs == sorted(seqs)
    assert tracker.last == 0.1
    assert tracker.previous == 0.2


# ═══════════════════════════════════════════════════════════════
# Blink detection
# ═══════════════════════════════════════════════════════════════

def test_blink_scenario_open_open_closed():
    """EAR [0.30, 0.32, 0.05]: the third frame crosses the edge."""
    detector = BlinkDetector(RollingBaselineTracker())
    counts = [detector.observe(v) for v in [0.30, 0.32, 0.05]]
    assert counts == [0, 0, 1]


def test_blink_needs_three_samples():
    detector = BlinkDetector(RollingBaselineTracker())
    detector.observe(0.30)
    assert detector.observe(0.01) == 0


def test_sustained_closure_counts_once():
    detector = BlinkDetector(RollingBaselineTracker())
    for v in [0.30, 0.31, 0.30]:
        detector.observe(v)
    counts = [detector.observe(0.04) for _ in range(15)]
    assert counts[0] == 1
    assert all(c == 1 for c in counts)


def test_blink_count_never_decreases_and_steps_by_one():
    rng = np.random.RandomState(7)
    detector = BlinkDetector(RollingBaselineTracker())
    last = 0
    for _ in range(300):
        v = 0.05 if rng.rand() < 0.25 else 0.30 + rng.uniform(-0.02, 0.02)
        count = detector.observe(v)
        assert count - last in (0, 1)
        last = count
    assert last > 0


def test_repeated_blinks_each_counted():
    detector = BlinkDetector(RollingBaselineTracker())
    pattern = [0.30, 0.30, 0.30, 0.05, 0.30, 0.30, 0.05, 0.05, 0.30, 0.05]
    for v in pattern:
        detector.observe(v)
    assert detector.count == 3


def test_detector_shares_tracker_history():
    tracker = RollingBaselineTracker()
    detector = BlinkDetector(tracker)
    detector.observe(0.3)
    detector.observe(0.2)
    assert tracker.values == [0.3, 0.2]
    assert detector.state.last_ear == 0.2


def test_thresholds_are_independent():
    tracker = RollingBaselineTracker()
    detector = BlinkDetector(tracker)
    for v in [0.30, 0.30, 0.30]:
        detector.observe(v)
    assert detector.blink_threshold() == pytest.approx(0.30 * BLINK_RATIO)
    assert detector.display_threshold() == pytest.approx(0.30 * DISPLAY_RATIO)
    assert BLINK_RATIO == 0.65
    assert DISPLAY_RATIO == 0.75


def test_eye_state_uses_display_threshold():
    """0.21 is below the display threshold (0.225) but above the blink edge (0.195)."""
    detector = BlinkDetector(RollingBaselineTracker())
    for v in [0.30, 0.30, 0.30]:
        detector.observe(v)
    count = detector.observe(0.21)
    assert count == 0
    assert detector.eye_state(0.21) is EyeState.CLOSED
    assert detector.eye_state(0.29) is EyeState.OPEN


def test_blink_reset():
    detector = BlinkDetector(RollingBaselineTracker())
    for v in [0.30, 0.32, 0.05]:
        detector.observe(v)
    detector.reset()
    assert detector.count == 0


# ═══════════════════════════════════════════════════════════════
# Movement
# ═══════════════════════════════════════════════════════════════

def test_movement_first_point_is_zero():
    assert MovementEstimator().observe(Point2D(5, 5)) == 0.0


def test_movement_stationary_is_zero():
    est = MovementEstimator()
    results = [est.observe(Point2D(0, 0)) for _ in range(10)]
    assert results[-1] == 0.0
    assert all(r == 0.0 for r in results)


def test_movement_is_average_manhattan_step():
    est = MovementEstimator()
    est.observe(Point2D(0, 0))
    # |3| + |4| = 7 over 2 points
    assert est.observe(Point2D(3, 4)) == pytest.approx(3.5)


def test_movement_back_and_forth_is_nonzero():
    est = MovementEstimator()
    value = 0.0
    for i in range(10):
        value = est.observe(Point2D(1.0 if i % 2 else 0.0, 0.0))
    # 9 unit steps over 10 points, zero net displacement
    assert value == pytest.approx(0.9)


def test_movement_history_capped_at_ten():
    est = MovementEstimator()
    for i in range(25):
        est.observe(Point2D(i, 0))
    assert len(est) == 10
    assert est.positions[0] == Point2D(15, 0)


def test_movement_missing_point_records_nothing():
    est = MovementEstimator()
    est.observe(Point2D(0, 0))
    est.observe(Point2D(2, 0))
    assert est.observe(None) == 0.0
    assert est.observe((math.nan,)) == 0.0
    assert len(est) == 2


@pytest.mark.parametrize("bad", [
    Point2D(math.nan, 0.0),
    (3.0, math.inf),
    _MockLandmark(-math.inf, 1.0),
])
def test_movement_non_finite_point_records_nothing(bad):
    est = MovementEstimator()
    est.observe(Point2D(0, 0))
    est.observe(Point2D(2, 0))
    assert est.observe(bad) == 0.0
    assert len(est) == 2


def test_point_of_rejects_non_finite():
    with pytest.raises(ValueError):
        Point2D.of((math.nan, 1.0))
    assert Point2D.of((1, 2)) == Point2D(1.0, 2.0)
