"""
Vigil — VigilEngine (Frame Processing Loop)
============================================
The central orchestrator. Once per tick it reads a frame, asks the
external detector for landmarks, runs the liveness pipeline of the
current session and publishes a FrameReport to the renderer.

Architecture:
  1. Worker Thread: fixed-cadence loop (~10 FPS), one frame at a time
  2. Caller / HUD Thread: get_latest_result() or on_report callback

Guarantees:
  - Frame N's pipeline completes before frame N+1's detector call
  - A slow detector delays the next tick; missed ticks are skipped
  - stop() cancels the loop, releases the camera, and no report is
    published after cancellation
  - A detector still mid-call when stop() gives up waiting is released
    by the worker once that call returns, never underneath it
  - DetectorUnavailable is terminal: the loop reports it once and stops
"""

import os
import queue
import threading
import time
from typing import Callable, Optional

from vigil_types import (
    DetectionRecord,
    DetectorUnavailable,
    FrameReport,
    LivenessStage,
)
from vigil_detector import LandmarkDetector
from vigil_logger import VigilLogger
from vigil_session import LivenessSession
from vigil_utils_core import CONFIG, setup_logger


_log = setup_logger('VigilEngine')

DEFAULT_CONFIG = {
    "camera_id": CONFIG['engine']['camera_id'],
    "camera_width": CONFIG['engine']['camera_width'],
    "camera_height": CONFIG['engine']['camera_height'],
    "frame_interval": CONFIG['engine']['frame_interval'],
    "log_path": CONFIG['engine']['log_path'],
    "stop_timeout": 2.0,
}


class VigilEngine:
    """
    Fixed-cadence liveness loop over one verification session.
    """

    def __init__(
        self,
        detector: LandmarkDetector,
        frame_source,
        config: Optional[dict] = None,
        on_report: Optional[Callable[[FrameReport], None]] = None,
        logger: Optional[VigilLogger] = None,
        session: Optional[LivenessSession] = None,
    ):
        """
        Args:
            detector: External landmark/expression detector.
            frame_source: Object with read_validated_frame() and release()
                          (e.g. VigilCamera).
            config: Overrides for DEFAULT_CONFIG.
            on_report: Called with every published FrameReport.
            logger: Audit logger; one is created from log_path if omitted.
            session: Pre-built session (tests, custom tuning).
        """
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.detector = detector
        self.frame_source = frame_source
        self.on_report = on_report
        self.session = session or LivenessSession()

        if logger is None:
            log_path = self.config["log_path"]
            logger = VigilLogger(os.path.dirname(log_path) or ".", os.path.basename(log_path))
        self.logger = logger

        self.frame_interval = float(self.config["frame_interval"])
        self.result_queue: queue.Queue = queue.Queue(maxsize=2)
        self.fatal_error: Optional[DetectorUnavailable] = None
        self.ticks_skipped = 0

        self._cancel = threading.Event()
        self._publish_lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._detector_loaded = False
        self._released = False
        self._verified_logged = False
        # Guards the hand-off of detector.release() to a stalled worker
        self._detector_lock = threading.Lock()
        self._worker_exited = True
        self._release_on_exit = False

        self.logger.log({
            "event": "engine_init",
            "detector": detector.name,
            "frame_interval": self.frame_interval,
        })

    # ── Lifecycle ─────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and not self._cancel.is_set()
        )

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def start(self) -> None:
        """Start the worker thread. A no-op if it is already running."""
        if self._released:
            raise RuntimeError("VigilEngine has been stopped; create a new engine")
        if self._thread is not None and self._thread.is_alive():
            return
        self._cancel.clear()
        self.fatal_error = None
        self._worker_exited = False
        self._thread = threading.Thread(target=self._run, name="vigil-loop", daemon=True)
        self._thread.start()
        self.logger.log({"event": "engine_started"})

    def stop(self) -> None:
        """Cancel the loop, release camera + detector, close the audit log.

        Safe to call more than once, and from the on_report callback.
        """
        with self._publish_lock:
            if self._released:
                return
            self._cancel.set()
            self._released = True

        deferred = False
        worker = self._thread
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=self.config["stop_timeout"])
            with self._detector_lock:
                if worker.is_alive() and not self._worker_exited:
                    self._release_on_exit = True
                    deferred = True
            if deferred:
                self.logger.warn(
                    "Worker still busy in detector call; detector released when it returns",
                    {"stop_timeout": self.config["stop_timeout"]},
                )

        try:
            self.frame_source.release()
        finally:
            if not deferred:
                self.detector.release()
            self.logger.log({"event": "engine_stopped", "session": self.session.summary()})
            self.logger.close()

    def __enter__(self) -> "VigilEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def reset_session(self) -> None:
        """Begin a new verification attempt with empty histories."""
        self.session.reset()
        self._verified_logged = False
        self.logger.log({"event": "session_reset"})

    # ── Per-frame pipeline ────────────────────────────────────

    def process_detection(
        self,
        detection: Optional[DetectionRecord],
        timestamp: Optional[float] = None,
    ) -> FrameReport:
        """Run one frame through the session and audit it. Does not publish."""
        prev_count = self.session.blink_count
        report = self.session.process(detection, timestamp)
        assessment = report.assessment

        if assessment.blink_count > prev_count:
            self.logger.log_blink(
                assessment.blink_count,
                report.debug.current_ear if report.debug else None,
            )
        if assessment.is_live and not self._verified_logged:
            self._verified_logged = True
            self.logger.log_verified(self.session.summary())

        self.logger.log_frame(report.to_dict())
        return report

    def step(self) -> Optional[FrameReport]:
        """Process exactly one frame from the frame source.

        Returns the published report, or None when the frame was dropped
        or the engine is cancelled.
        """
        if self._cancel.is_set():
            return None

        try:
            if not self._detector_loaded:
                self.detector.load()
                self._detector_loaded = True

            ok, frame, ts = self.frame_source.read_validated_frame()
            if not ok:
                return None

            detection = self.detector.detect(frame)
        except DetectorUnavailable as e:
            return self._fail(e)
        except Exception as e:
            self.logger.error(f"Detector error: {e}", exception=e)
            report = self.session.error()
            self._publish(report)
            return report

        report = self.process_detection(detection, ts)
        self._publish(report)
        return report

    # ── Internals ─────────────────────────────────────────────

    def _fail(self, error: DetectorUnavailable) -> FrameReport:
        """Terminal detector failure: report once, then cancel the loop."""
        self.fatal_error = error
        self.logger.error(f"Detector unavailable: {error}", exception=error)
        report = self.session.error(reason=str(error))
        self._publish(report)
        self._cancel.set()
        return report

    def _publish(self, report: FrameReport) -> bool:
        with self._publish_lock:
            if self._cancel.is_set():
                return False
            try:
                self.result_queue.put_nowait(report)
            except queue.Full:
                try:
                    self.result_queue.get_nowait()
                except queue.Empty:
                    pass
                self.result_queue.put_nowait(report)
            if self.on_report is not None:
                self.on_report(report)
            return True

    def _run(self) -> None:
        """Worker thread: one step per tick until cancelled."""
        next_tick = time.monotonic()
        try:
            while not self._cancel.is_set():
                try:
                    self.step()
                except Exception as e:
                    self.logger.error(f"Frame loop error: {e}", exception=e, exc_info=True)

                next_tick += self.frame_interval
                now = time.monotonic()
                if next_tick < now:
                    missed = int((now - next_tick) // self.frame_interval) + 1
                    self.ticks_skipped += missed
                    next_tick += missed * self.frame_interval
                self._cancel.wait(max(0.0, next_tick - now))
        finally:
            with self._detector_lock:
                self._worker_exited = True
                release = self._release_on_exit
            if release:
                self.detector.release()
                _log.info("Detector released by worker after stalled call")

        if self.fatal_error is not None:
            _log.error("Liveness loop halted: %s", self.fatal_error)

    def get_latest_result(self) -> Optional[FrameReport]:
        """Most recent report not yet consumed, or None."""
        latest = None
        while True:
            try:
                latest = self.result_queue.get_nowait()
            except queue.Empty:
                return latest

    @property
    def stage(self) -> Optional[LivenessStage]:
        latest = self.session.latest
        return latest.stage if latest else None
