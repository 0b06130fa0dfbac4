"""
Vigil — Landmark Detector Interface
====================================
Defines the `LandmarkDetector` base class the engine polls once per
frame, and a MediaPipe FaceLandmarker implementation.

Engine Integration:
  - VigilEngine calls load() once before the first frame
  - Each tick, detect(frame) returns a DetectionRecord or None
  - DetectorUnavailable from load()/detect() ends the session
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

from vigil_types import DetectionRecord, DetectorUnavailable
from vigil_landmarks import detection_from_mesh
from vigil_utils_core import CONFIG, setup_logger


_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_log = setup_logger('VigilDetector')


class LandmarkDetector(ABC):
    """
    Abstract Base Class for face landmark / expression detectors.
    The liveness core treats implementations as black boxes.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used in logs (e.g., 'mediapipe')."""

    def load(self) -> None:
        """Load models. Raise DetectorUnavailable if that is impossible."""

    @abstractmethod
    def detect(self, frame: np.ndarray) -> Optional[DetectionRecord]:
        """
        Detect the primary face in a BGR frame.

        Returns:
            DetectionRecord with 6-point eyes (pixel coordinates), a nose
            reference point and happy / surprised / neutral probabilities,
            or None when no face is present.

        Raises:
            DetectorUnavailable: the model is not loaded or has failed
                permanently.
        """

    def release(self) -> None:
        """Optional cleanup logic on shutdown."""


class MediaPipeLandmarkDetector(LandmarkDetector):
    """MediaPipe FaceLandmarker (478-point mesh + blendshapes).

    num_faces=1: the session tracks one subject.
    """

    def __init__(
        self,
        model_path: str = CONFIG['detector']['landmarker_model'],
        min_detection_confidence: float = CONFIG['detector']['min_detection_confidence'],
    ):
        self._model_path = model_path
        self._min_confidence = min_detection_confidence
        self._landmarker = None
        self._frame_timestamp_ms = 0

    @property
    def name(self) -> str:
        return "mediapipe"

    def load(self) -> None:
        full_path = self._model_path
        if not os.path.isabs(full_path):
            full_path = os.path.join(_SCRIPT_DIR, full_path)
        if not os.path.exists(full_path):
            raise DetectorUnavailable(f"MediaPipe model not found: {full_path}")

        try:
            from mediapipe.tasks import python
            from mediapipe.tasks.python import vision
        except ImportError as e:
            raise DetectorUnavailable(f"mediapipe is not installed ({e})") from e

        base_options = python.BaseOptions(
            model_asset_path=full_path,
            delegate=python.BaseOptions.Delegate.CPU,
        )
        options = vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=self._min_confidence,
            min_face_presence_confidence=self._min_confidence,
            min_tracking_confidence=0.5,
            output_face_blendshapes=True,
        )
        try:
            self._landmarker = vision.FaceLandmarker.create_from_options(options)
        except (RuntimeError, ValueError) as e:
            raise DetectorUnavailable(f"FaceLandmarker failed to load: {e}") from e
        _log.info("MediaPipe FaceLandmarker loaded — %s", full_path)

    def detect(self, frame: np.ndarray) -> Optional[DetectionRecord]:
        if self._landmarker is None:
            raise DetectorUnavailable("MediaPipe landmarker not loaded")

        import mediapipe as mp

        h, w = frame.shape[:2]
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

        # VIDEO mode requires strictly increasing timestamps
        self._frame_timestamp_ms += 100
        result = self._landmarker.detect_for_video(mp_image, self._frame_timestamp_ms)

        if not result or not result.face_landmarks:
            return None

        face_lms = result.face_landmarks[0]
        lm_pixel = np.array([[lm.x * w, lm.y * h] for lm in face_lms], dtype=np.float32)
        blendshapes = result.face_blendshapes[0] if result.face_blendshapes else None
        return detection_from_mesh(lm_pixel, blendshapes)

    def release(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        _log.info("MediaPipe detector released")
