"""
Vigil — Liveness Scorer
========================
Fuses blink count, head movement and expression strength into one
bounded score, and derives the liveness stage and guidance message.

SCORE:
  score = min(blinks * 0.3 + movement * 2 + expression * 0.3, 1.0)

The weights mix a count, a pixel average and a probability. They are
empirically tuned and kept as literal constants.

STAGE TRUTH TABLE (first match wins):

  score > 0.7 | blinks < 2 | movement < 0.1 | → Stage
  ------------|------------|----------------|------------------
  yes         | yes        | any            | → AWAITING_BLINKS
  yes         | no         | yes            | → AWAITING_MOVEMENT
  yes         | no         | no             | → VERIFIED
  no          | any        | any            | → SEARCHING

There is no stored stage: it is recomputed from the live counters on
every frame.
"""

from __future__ import annotations

from typing import Optional

from vigil_types import (
    EyeState,
    Expressions,
    LivenessAssessment,
    LivenessStage,
)
from vigil_utils_core import CONFIG


_SCORING = CONFIG['scoring']

BLINK_WEIGHT         = _SCORING['blink_weight']
MOVEMENT_WEIGHT      = _SCORING['movement_weight']
EXPRESSION_WEIGHT    = _SCORING['expression_weight']
SCORE_CAP            = _SCORING['score_cap']
LIVE_SCORE_THRESHOLD = _SCORING['live_threshold']
REQUIRED_BLINKS      = _SCORING['required_blinks']
MIN_MOVEMENT         = _SCORING['min_movement']


MSG_NEED_BLINKS   = "Please blink naturally ({count}/{required} blinks)"
MSG_NEED_MOVEMENT = "Please move your head slightly"
MSG_VERIFIED      = "Live face verified! Natural movements detected."
MSG_SEARCHING     = "Position your face in the box and blink naturally"
MSG_NO_FACE       = "No face detected. Please position your face in the center box."
MSG_FRAME_ERROR   = "Face detection error. Please ensure good lighting and face the camera."
MSG_UNAVAILABLE   = "Face detection unavailable: {reason}. Please restart verification."


def classify_stage(
    score: float,
    blink_count: int,
    movement: float,
    live_threshold: float = LIVE_SCORE_THRESHOLD,
    required_blinks: int = REQUIRED_BLINKS,
    min_movement: float = MIN_MOVEMENT,
) -> LivenessStage:
    """Pure stage classification over the current signals."""
    if score > live_threshold:
        if blink_count < required_blinks:
            return LivenessStage.AWAITING_BLINKS
        if movement < min_movement:
            return LivenessStage.AWAITING_MOVEMENT
        return LivenessStage.VERIFIED
    return LivenessStage.SEARCHING


class LivenessScorer:
    """Stateless score fusion and guidance-message selection."""

    def __init__(
        self,
        blink_weight: float = BLINK_WEIGHT,
        movement_weight: float = MOVEMENT_WEIGHT,
        expression_weight: float = EXPRESSION_WEIGHT,
        score_cap: float = SCORE_CAP,
        live_threshold: float = LIVE_SCORE_THRESHOLD,
        required_blinks: int = REQUIRED_BLINKS,
        min_movement: float = MIN_MOVEMENT,
    ):
        self.blink_weight = blink_weight
        self.movement_weight = movement_weight
        self.expression_weight = expression_weight
        self.score_cap = score_cap
        self.live_threshold = live_threshold
        self.required_blinks = required_blinks
        self.min_movement = min_movement

    def score(self, blink_count: int, movement: float, expression_change: float) -> float:
        raw = (
            blink_count * self.blink_weight
            + movement * self.movement_weight
            + expression_change * self.expression_weight
        )
        return min(raw, self.score_cap)

    def message_for(self, stage: LivenessStage, blink_count: int) -> str:
        if stage is LivenessStage.AWAITING_BLINKS:
            return MSG_NEED_BLINKS.format(count=blink_count, required=self.required_blinks)
        if stage is LivenessStage.AWAITING_MOVEMENT:
            return MSG_NEED_MOVEMENT
        if stage is LivenessStage.VERIFIED:
            return MSG_VERIFIED
        return MSG_SEARCHING

    def assess(
        self,
        blink_count: int,
        movement: float,
        expressions: Expressions,
        eye_state: EyeState = EyeState.OPEN,
    ) -> LivenessAssessment:
        """Fuse the current signals into a LivenessAssessment.

        Args:
            blink_count: Cumulative blinks this session.
            movement: Average nose-tip jitter (pixels per step).
            expressions: happy / surprised / neutral probabilities.
            eye_state: Display eye state, carried through for rendering.
        """
        if isinstance(expressions, dict):
            expressions = Expressions.from_mapping(expressions)
        score = self.score(blink_count, movement, expressions.strongest)
        stage = classify_stage(
            score, blink_count, movement,
            self.live_threshold, self.required_blinks, self.min_movement,
        )
        return LivenessAssessment(
            score=score,
            message=self.message_for(stage, blink_count),
            eye_state=eye_state,
            blink_count=blink_count,
            movement=movement,
            stage=stage,
        )

    def no_face(self, blink_count: int = 0, movement: float = 0.0) -> LivenessAssessment:
        """Override for frames without a face: score 0, counters untouched."""
        return LivenessAssessment(
            score=0.0,
            message=MSG_NO_FACE,
            eye_state=EyeState.OPEN,
            blink_count=blink_count,
            movement=movement,
            stage=LivenessStage.NO_FACE,
        )

    def error(
        self,
        blink_count: int = 0,
        movement: float = 0.0,
        reason: Optional[str] = None,
    ) -> LivenessAssessment:
        """Override for detector faults.

        With a reason the fault is terminal (detector unavailable);
        without one it is a transient per-frame error.
        """
        message = MSG_UNAVAILABLE.format(reason=reason) if reason else MSG_FRAME_ERROR
        return LivenessAssessment(
            score=0.0,
            message=message,
            eye_state=EyeState.OPEN,
            blink_count=blink_count,
            movement=movement,
            stage=LivenessStage.ERROR,
        )
