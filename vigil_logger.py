"""
Vigil — Session Audit Trail
============================
Append-only JSONL record of one engine's lifetime: every frame
report, each counted blink, the verification moment and detector
faults. One line per entry, so a crashed session still leaves a
readable prefix.

Entry shape:
  {"timestamp": <unix s>, "level": SYSTEM|AUDIT|WARN|ERROR,
   "event": <name>, "data": {...}}

Console output goes through setup_logger('VigilAudit'); the file is
the durable record.
"""

import json
import os
import sys
import threading
import time
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

from vigil_utils_core import setup_logger


_console = setup_logger('VigilAudit')


class VigilJSONEncoder(json.JSONEncoder):
    """Serializes NumPy scalars/arrays and str-Enums found in reports."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class VigilLogger:
    """JSONL audit trail shared by the engine's worker and caller threads."""

    def __init__(self, log_dir: str = "logs", filename: str = "vigil_audit.jsonl"):
        self.log_dir = log_dir or "."
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, filename)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "event": "system_startup",
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append one entry. Silently dropped once the trail is closed."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        line = json.dumps(entry, cls=VigilJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    # ── Liveness events ──────────────────────────────────────

    def log_frame(self, report: Dict[str, Any]):
        self.log(report, event="frame_processed")

    def log_blink(self, count: int, ear: Optional[float]):
        self.log({"count": count, "ear": ear}, event="blink_detected")

    def log_verified(self, summary: Dict[str, Any]):
        _console.info("Liveness verified after %s frames", summary.get("frames_processed"))
        self.log({"session": summary}, event="liveness_verified")

    # ── Faults ───────────────────────────────────────────────

    def warn(self, message: str, context: Optional[Dict] = None):
        _console.warning(message)
        self.log({"message": message, "context": context}, level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[Exception] = None, exc_info: bool = False):
        _console.error(message, exc_info=exc_info)
        self.log({
            "message": message,
            "exception": str(exception) if exception else None,
            "exception_type": type(exception).__name__ if exception else None,
        }, level="ERROR", event="system_error")

    def close(self):
        """Write the shutdown entry, then close the file. Idempotent."""
        self.log({"message": "Audit trail closed"}, level="SYSTEM", event="system_shutdown")
        with self._lock:
            if not self._file.closed:
                self._file.close()
