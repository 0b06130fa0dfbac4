"""
Vigil — Verification Session
=============================
Owns every piece of cross-frame state for ONE verification attempt:

  - RollingBaselineTracker (EAR history)
  - BlinkDetector (blink state, shares the tracker above)
  - MovementEstimator (nose-tip history)
  - frame counter + latest assessment

Nothing here is shared between sessions and nothing is global.
A session is driven by a single thread at a time.
"""

from __future__ import annotations

import time
from typing import Optional

from vigil_types import (
    DebugState,
    DetectionRecord,
    FrameReport,
    LivenessAssessment,
)
from vigil_scorer import LivenessScorer
from vigil_utils_core import (
    BASELINE_TOP_K,
    BLINK_RATIO,
    DISPLAY_RATIO,
    HISTORY_SIZE,
    POSITION_HISTORY_SIZE,
    BlinkDetector,
    MovementEstimator,
    RollingBaselineTracker,
    both_eyes_ear,
    setup_logger,
)


_log = setup_logger('VigilSession')


class LivenessSession:
    """Per-attempt liveness state and the one-frame pipeline over it."""

    def __init__(
        self,
        scorer: Optional[LivenessScorer] = None,
        history_size: int = HISTORY_SIZE,
        baseline_top_k: int = BASELINE_TOP_K,
        position_history_size: int = POSITION_HISTORY_SIZE,
        blink_ratio: float = BLINK_RATIO,
        display_ratio: float = DISPLAY_RATIO,
    ):
        self.scorer = scorer or LivenessScorer()
        self.baseline = RollingBaselineTracker(history_size, baseline_top_k)
        self.blinks = BlinkDetector(self.baseline, blink_ratio, display_ratio)
        self.movement = MovementEstimator(position_history_size)
        self.frames_processed = 0
        self.latest: Optional[LivenessAssessment] = None
        self._last_movement = 0.0
        self.started_at = time.monotonic()

    @property
    def blink_count(self) -> int:
        return self.blinks.count

    def process(
        self,
        detection: Optional[DetectionRecord],
        timestamp: Optional[float] = None,
    ) -> FrameReport:
        """Run the liveness pipeline for one frame.

        A None detection is a no-face frame: histories are left
        untouched and the scorer's no-face override is reported.
        """
        ts = time.monotonic() if timestamp is None else timestamp
        seq = self.frames_processed
        self.frames_processed += 1

        if detection is None:
            assessment = self.scorer.no_face(self.blinks.count, self._last_movement)
            self.latest = assessment
            return FrameReport(seq=seq, timestamp=ts, assessment=assessment)

        prev_count = self.blinks.count
        ear = both_eyes_ear(detection.left_eye, detection.right_eye)
        count = self.blinks.observe(ear)
        movement = self.movement.observe(detection.nose)
        self._last_movement = movement

        if count > prev_count:
            _log.info("Blink detected — total=%d (EAR=%.3f)", count, ear)

        eye_state = self.blinks.eye_state(ear)
        assessment = self.scorer.assess(count, movement, detection.expressions, eye_state)

        baseline = self.baseline.baseline()
        debug = DebugState(
            current_ear=ear,
            baseline_ear=baseline,
            blink_threshold=baseline * self.blinks.blink_ratio,
            display_threshold=baseline * self.blinks.display_ratio,
            eye_state=eye_state,
        )
        self.latest = assessment
        return FrameReport(seq=seq, timestamp=ts, assessment=assessment, debug=debug)

    def error(self, reason: Optional[str] = None, timestamp: Optional[float] = None) -> FrameReport:
        """Report a detector fault for this frame without touching history."""
        ts = time.monotonic() if timestamp is None else timestamp
        seq = self.frames_processed
        self.frames_processed += 1
        assessment = self.scorer.error(self.blinks.count, self._last_movement, reason)
        self.latest = assessment
        return FrameReport(seq=seq, timestamp=ts, assessment=assessment)

    def reset(self) -> None:
        """Return to session-start state for a new verification attempt."""
        self.baseline.reset()
        self.blinks.reset()
        self.movement.reset()
        self.frames_processed = 0
        self.latest = None
        self._last_movement = 0.0
        self.started_at = time.monotonic()

    def summary(self) -> dict:
        return {
            "frames_processed": self.frames_processed,
            "blink_count": self.blinks.count,
            "ear_history_length": len(self.baseline),
            "position_history_length": len(self.movement),
            "baseline_ear": round(self.baseline.baseline(), 4),
            "stage": self.latest.stage.value if self.latest else None,
            "duration_s": round(time.monotonic() - self.started_at, 2),
        }
