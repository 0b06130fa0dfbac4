"""
Vigil — Shared Data Types
==========================
Value objects passed between the detector, the liveness pipeline
and the rendering collaborator, plus the error taxonomy.

  - Point2D / EyeLandmarks / DetectionRecord: detector input contract
  - LivenessAssessment / DebugState / FrameReport: per-frame output
  - VigilError hierarchy: MalformedLandmarks, DetectorUnavailable
"""

from __future__ import annotations

import math
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional, Sequence, Tuple


# ===================================================================
# Errors
# ===================================================================

class VigilError(Exception):
    """Base class for all Vigil errors."""


class MalformedLandmarks(VigilError):
    """Eye landmark set without exactly 6 usable points, or missing nose."""


class DetectorUnavailable(VigilError):
    """Landmark detector or camera cannot serve frames. Fatal to a session."""


# ===================================================================
# Geometry
# ===================================================================

@dataclass(frozen=True)
class Point2D:
    """Pixel coordinate of a single landmark."""
    x: float
    y: float

    @classmethod
    def of(cls, point) -> "Point2D":
        """Build from a Point2D, an object with .x/.y, or an (x, y) pair.

        Raises ValueError for NaN or infinite coordinates.
        """
        if isinstance(point, Point2D):
            x, y = point.x, point.y
        elif hasattr(point, "x") and hasattr(point, "y"):
            x, y = float(point.x), float(point.y)
        else:
            x, y = float(point[0]), float(point[1])
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ValueError(f"non-finite landmark coordinate ({x}, {y})")
        return point if isinstance(point, Point2D) else cls(x, y)


# Six points: 0,3 = horizontal corners; 1,2 upper lid; 4,5 lower lid
EyeLandmarks = Tuple[Point2D, ...]


@dataclass(frozen=True)
class EARSample:
    """One frame's eye-aspect-ratio, tagged with its sequence number."""
    value: float
    seq: int


@dataclass
class BlinkState:
    count: int = 0
    last_ear: float = 0.0


@dataclass(frozen=True)
class Expressions:
    """Expression probabilities in [0, 1] reported by the detector."""
    happy: float = 0.0
    surprised: float = 0.0
    neutral: float = 0.0

    @classmethod
    def from_mapping(cls, values: Optional[dict]) -> "Expressions":
        values = values or {}
        return cls(
            happy=float(values.get("happy", 0.0)),
            surprised=float(values.get("surprised", 0.0)),
            neutral=float(values.get("neutral", 0.0)),
        )

    @property
    def strongest(self) -> float:
        return max(self.happy, self.surprised, self.neutral)


@dataclass(frozen=True)
class DetectionRecord:
    """Everything the liveness pipeline needs from one detected face.

    Attributes:
        left_eye: 6 pixel points, anatomical order (see EyeLandmarks).
        right_eye: 6 pixel points, anatomical order.
        nose: Reference point for movement tracking, or None if missing.
        expressions: happy / surprised / neutral probabilities.
    """
    left_eye: Sequence = ()
    right_eye: Sequence = ()
    nose: Optional[Point2D] = None
    expressions: Expressions = field(default_factory=Expressions)


# ===================================================================
# Decisions
# ===================================================================

class EyeState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class LivenessStage(str, Enum):
    """Liveness state, re-derived every frame from the live counters.

    ERROR and NO_FACE are orchestrator overrides; the remaining four
    are produced by the scorer.
    """
    ERROR = "ERROR"
    NO_FACE = "NO_FACE"
    SEARCHING = "SEARCHING"
    AWAITING_BLINKS = "AWAITING_BLINKS"
    AWAITING_MOVEMENT = "AWAITING_MOVEMENT"
    VERIFIED = "VERIFIED"


@dataclass(frozen=True)
class LivenessAssessment:
    """Fused liveness decision for one frame."""
    score: float
    message: str
    eye_state: EyeState
    blink_count: int
    movement: float
    stage: LivenessStage

    @property
    def is_live(self) -> bool:
        return self.stage is LivenessStage.VERIFIED

    def to_dict(self) -> dict:
        d = asdict(self)
        d["eye_state"] = self.eye_state.value
        d["stage"] = self.stage.value
        d["is_live"] = self.is_live
        return d


@dataclass(frozen=True)
class DebugState:
    """Raw signals behind an assessment, for overlays and audit logs."""
    current_ear: float
    baseline_ear: float
    blink_threshold: float
    display_threshold: float
    eye_state: EyeState

    def to_dict(self) -> dict:
        d = asdict(self)
        d["eye_state"] = self.eye_state.value
        return d


@dataclass(frozen=True)
class FrameReport:
    """What the engine publishes to the renderer for each processed frame."""
    seq: int
    timestamp: float
    assessment: LivenessAssessment
    debug: Optional[DebugState] = None

    @property
    def face_found(self) -> bool:
        return self.debug is not None

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "timestamp": self.timestamp,
            "face_found": self.face_found,
            "assessment": self.assessment.to_dict(),
            "debug": self.debug.to_dict() if self.debug else None,
        }
