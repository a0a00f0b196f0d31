"""
Request metrics for the book chat API.

Tracks latency, throughput, process memory and failures per error kind.
Each request is also appended to <log_dir>/metrics.jsonl.
"""
from __future__ import annotations

import json
import os
import threading
import time
from collections import Counter
from pathlib import Path

import psutil

from .config import METRICS_DIR


class MetricsCollector:
    """Thread-safe request metrics tracker with JSONL file logging."""

    def __init__(self, log_dir: str | Path = METRICS_DIR):
        self._lock = threading.Lock()
        self._start_time: float = time.time()

        self._total_requests: int = 0
        self._total_latency_ms: float = 0.0
        self._min_latency_ms: float = float("inf")
        self._max_latency_ms: float = 0.0
        self._errors_by_kind: Counter[str] = Counter()
        self._requests_by_model: Counter[str] = Counter()

        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = self._log_dir / "metrics.jsonl"

        self._process = psutil.Process(os.getpid())

    def record_request(
        self,
        latency_ms: float,
        success: bool,
        error_kind: str | None = None,
        model: str = "",
        document_id: str = "",
    ) -> None:
        """Records one /chat outcome and appends it to the JSONL log."""
        entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "latency_ms": round(latency_ms, 2),
            "success": success,
            "error_kind": error_kind,
            "model": model,
            "document_id": document_id,
        }

        with self._lock:
            self._total_requests += 1
            self._total_latency_ms += latency_ms
            self._min_latency_ms = min(self._min_latency_ms, latency_ms)
            self._max_latency_ms = max(self._max_latency_ms, latency_ms)
            if not success:
                self._errors_by_kind[error_kind or "Unknown"] += 1
            if model:
                self._requests_by_model[model] += 1

        # Append outside the lock; a failed write only loses the log line.
        try:
            with open(self._log_path, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, ensure_ascii=True) + "\n")
        except OSError:
            pass

    def get_summary(self) -> dict:
        """Returns a metrics snapshot."""
        with self._lock:
            total = self._total_requests
            avg_lat = (self._total_latency_ms / total) if total > 0 else 0.0
            min_lat = self._min_latency_ms if total > 0 else 0.0
            max_lat = self._max_latency_ms if total > 0 else 0.0
            errors_by_kind = dict(self._errors_by_kind)
            by_model = dict(self._requests_by_model)

        errors = sum(errors_by_kind.values())
        uptime_s = time.time() - self._start_time
        throughput_rps = (total / uptime_s) if uptime_s > 0 else 0.0
        mem_info = self._process.memory_info()

        return {
            "latency": {
                "avg_ms": round(avg_lat, 2),
                "min_ms": round(min_lat, 2),
                "max_ms": round(max_lat, 2),
            },
            "throughput": {
                "total_requests": total,
                "requests_per_second": round(throughput_rps, 4),
                "uptime_seconds": round(uptime_s, 1),
            },
            "memory": {
                "rss_mb": round(mem_info.rss / (1024 * 1024), 1),
                "vms_mb": round(mem_info.vms / (1024 * 1024), 1),
            },
            "models": by_model,
            "errors": {
                "count": errors,
                "by_kind": errors_by_kind,
                "rate_percent": round((errors / total * 100) if total > 0 else 0.0, 2),
            },
        }
