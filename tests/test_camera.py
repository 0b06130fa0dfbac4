"""
Vigil -- Camera Frame Source Tests
===================================
Synthetic NumPy frames and a mocked cv2.VideoCapture; no real camera.
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from vigil_camera import VigilCamera
from vigil_types import DetectorUnavailable


# ─── Fixtures ─────────────────────────────────────────────────

def _make_valid_frame(height: int = 480, width: int = 640, brightness: int = 128) -> np.ndarray:
    rng = np.random.RandomState(42)
    return rng.randint(
        max(20, brightness - 60),
        min(240, brightness + 60),
        size=(height, width, 3),
        dtype=np.uint8,
    )


def _make_mock_capture(frame, ret: bool = True, opened: bool = True):
    mock_cap = MagicMock()
    mock_cap.read.return_value = (ret, frame)
    mock_cap.isOpened.return_value = opened
    mock_cap.get.return_value = 640.0
    mock_cap.set.return_value = True
    return mock_cap


def _open_camera(mock_cap) -> VigilCamera:
    with patch("vigil_camera.cv2.VideoCapture", return_value=mock_cap):
        return VigilCamera(0)


# ─── Tests ────────────────────────────────────────────────────

def test_valid_frame_passes():
    frame = _make_valid_frame()
    cam = _open_camera(_make_mock_capture(frame))
    ok, result, ts = cam.read_validated_frame()

    assert ok is True
    assert np.array_equal(result, frame)
    assert ts > 0
    cam.release()


@pytest.mark.parametrize("ret,frame", [
    (False, None),
    (True, None),
    (True, np.full((480, 640), 128, dtype=np.uint8)),              # grayscale
    (True, np.full((480, 640, 4), 128, dtype=np.uint8)),           # RGBA
    (True, np.full((480, 640, 3), 0.5, dtype=np.float32)),         # float
    (True, np.full((60, 80, 3), 128, dtype=np.uint8)),             # tiny
    (True, np.zeros((480, 640, 3), dtype=np.uint8)),               # lens cap
    (True, np.full((480, 640, 3), 255, dtype=np.uint8)),           # saturated
])
def test_invalid_frames_dropped(ret, frame):
    cam = _open_camera(_make_mock_capture(frame, ret=ret))
    ok, result, ts = cam.read_validated_frame()

    assert ok is False
    assert result is None
    assert ts == 0.0
    assert cam.get_health_status()["frames_dropped"] == 1


def test_unopened_camera_is_unavailable():
    mock_cap = _make_mock_capture(None, opened=False)
    with patch("vigil_camera.cv2.VideoCapture", return_value=mock_cap):
        with pytest.raises(DetectorUnavailable):
            VigilCamera(3)
    mock_cap.release.assert_called_once()


def test_release_is_idempotent():
    mock_cap = _make_mock_capture(_make_valid_frame())
    cam = _open_camera(mock_cap)
    cam.release()
    cam.release()
    mock_cap.release.assert_called_once()


def test_context_manager_releases():
    mock_cap = _make_mock_capture(_make_valid_frame())
    with _open_camera(mock_cap) as cam:
        cam.read_validated_frame()
    mock_cap.release.assert_called_once()


def test_health_drop_rate():
    mock_cap = _make_mock_capture(_make_valid_frame())
    cam = _open_camera(mock_cap)
    cam.read_validated_frame()
    mock_cap.read.return_value = (False, None)
    cam.read_validated_frame()

    health = cam.get_health_status()
    assert health["frames_total"] == 2
    assert health["frames_dropped"] == 1
    assert health["drop_rate_pct"] == pytest.approx(50.0)
    cam.release()


def test_health_reports_connection():
    mock_cap = _make_mock_capture(_make_valid_frame())
    cam = _open_camera(mock_cap)
    assert cam.get_health_status()["connected"] is True

    mock_cap.isOpened.return_value = False
    assert cam.get_health_status()["connected"] is False
    cam.release()
