"""Host health snapshot via psutil."""

import os
import platform
import time
from datetime import datetime, timezone

import psutil


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class HealthSampler:
    def __init__(self, disk_path: str = "/"):
        self._disk_path = disk_path
        # First cpu_percent(interval=None) call always reports 0.0; prime it.
        psutil.cpu_percent(interval=None)

    def sample_now(self) -> dict:
        """Return a JSON-ready snapshot of CPU, memory, disk, uptime and runtime."""
        now = time.time()
        stamp = _iso(now)
        mem = psutil.virtual_memory()
        disk = psutil.disk_usage(self._disk_path)
        boot = psutil.boot_time()

        return {
            "cpu": {
                "usage_percent": psutil.cpu_percent(interval=None),
                "cores": psutil.cpu_count() or os.cpu_count() or 1,
                "timestamp": stamp,
            },
            "memory": {
                "total_bytes": mem.total,
                "used_bytes": mem.used,
                "available_bytes": mem.available,
                "used_percent": mem.percent,
                "timestamp": stamp,
            },
            "disk": {
                "path": self._disk_path,
                "total_bytes": disk.total,
                "used_bytes": disk.used,
                "free_bytes": disk.free,
                "used_percent": disk.percent,
                "timestamp": stamp,
            },
            "uptime": {
                "uptime_seconds": int(now - boot),
                "boot_time": _iso(boot),
                "timestamp": stamp,
            },
            "runtime": {
                "python_version": platform.python_version(),
                "os": platform.system().lower(),
                "arch": platform.machine(),
            },
        }
