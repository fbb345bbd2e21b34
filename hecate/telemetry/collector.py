"""
System-Sampler
==============

OS-Metriken (CPU, Speicher, Disks, Netzwerk, Prozesse) ueber psutil.
Durchsatzwerte werden als Differenz zum vorherigen Aufruf berechnet.
"""

import time
from typing import Any, Dict, List, Optional

import psutil

GB = 1024 ** 3


class SystemSampler:
    """Liest OS-Metriken; ein Exemplar pro Aggregator (haelt Zaehlerstaende)"""

    TOP_PROCESSES = 5
    SKIPPED_FSTYPES = ("squashfs", "tmpfs", "devtmpfs", "overlay")

    def __init__(self):
        self._last_disk_io: Optional[Any] = None
        self._last_net_io: Optional[Any] = None
        self._last_time: Optional[float] = None
        # Erster Aufruf von cpu_percent(interval=None) liefert 0.0
        psutil.cpu_percent(interval=None)

    def cpu(self) -> Dict[str, Any]:
        """CPU-Auslastung gesamt und pro Kern"""
        try:
            freq = psutil.cpu_freq()
            freq_current = freq.current if freq else 0.0
            freq_max = freq.max if freq else 0.0
        except (AttributeError, RuntimeError, OSError):
            freq_current = 0.0
            freq_max = 0.0

        return {
            "percent": psutil.cpu_percent(interval=None),
            "per_core": psutil.cpu_percent(interval=None, percpu=True),
            "cores": psutil.cpu_count(logical=False) or 1,
            "threads": psutil.cpu_count(logical=True) or 1,
            "frequency_mhz": freq_current,
            "frequency_max_mhz": freq_max,
        }

    def memory(self) -> Dict[str, Any]:
        mem = psutil.virtual_memory()
        swap = psutil.swap_memory()
        return {
            "total_gb": mem.total / GB,
            "used_gb": mem.used / GB,
            "available_gb": mem.available / GB,
            "percent": mem.percent,
            "swap_total_gb": swap.total / GB,
            "swap_percent": swap.percent,
        }

    def disks(self, elapsed: Optional[float]) -> List[Dict[str, Any]]:
        """Belegung pro Partition plus globaler Lese-/Schreibdurchsatz"""
        io = psutil.disk_io_counters()
        read_rate = write_rate = 0.0
        if io is not None and self._last_disk_io is not None and elapsed:
            read_rate = (io.read_bytes - self._last_disk_io.read_bytes) / elapsed
            write_rate = (io.write_bytes - self._last_disk_io.write_bytes) / elapsed
        self._last_disk_io = io

        disks = []
        for partition in psutil.disk_partitions(all=False):
            if partition.fstype in self.SKIPPED_FSTYPES:
                continue
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError):
                continue
            disks.append({
                "device": partition.device,
                "mountpoint": partition.mountpoint,
                "fstype": partition.fstype,
                "total_gb": usage.total / GB,
                "used_gb": usage.used / GB,
                "percent": usage.percent,
                "read_bytes_per_sec": read_rate,
                "write_bytes_per_sec": write_rate,
            })
        return disks

    def network(self, elapsed: Optional[float]) -> Dict[str, Any]:
        io = psutil.net_io_counters()
        sent_rate = recv_rate = 0.0
        if self._last_net_io is not None and elapsed:
            sent_rate = (io.bytes_sent - self._last_net_io.bytes_sent) / elapsed
            recv_rate = (io.bytes_recv - self._last_net_io.bytes_recv) / elapsed
        self._last_net_io = io
        return {
            "bytes_sent": io.bytes_sent,
            "bytes_recv": io.bytes_recv,
            "packets_sent": io.packets_sent,
            "packets_recv": io.packets_recv,
            "sent_bytes_per_sec": sent_rate,
            "recv_bytes_per_sec": recv_rate,
        }

    def processes(self) -> Dict[str, Any]:
        """Anzahl und Top-Prozesse nach CPU und Speicher"""
        procs = []
        for proc in psutil.process_iter(["pid", "name", "cpu_percent", "memory_percent"]):
            info = proc.info
            procs.append({
                "pid": info["pid"],
                "name": info.get("name") or "",
                "cpu_percent": info.get("cpu_percent") or 0.0,
                "memory_percent": info.get("memory_percent") or 0.0,
            })
        by_cpu = sorted(procs, key=lambda p: p["cpu_percent"], reverse=True)
        by_mem = sorted(procs, key=lambda p: p["memory_percent"], reverse=True)
        return {
            "count": len(procs),
            "top_cpu": by_cpu[:self.TOP_PROCESSES],
            "top_memory": by_mem[:self.TOP_PROCESSES],
        }

    def sample(self) -> Dict[str, Any]:
        """Vollstaendiges OS-Sample"""
        now = time.monotonic()
        elapsed = now - self._last_time if self._last_time is not None else None
        self._last_time = now
        return {
            "cpu": self.cpu(),
            "memory": self.memory(),
            "disks": self.disks(elapsed),
            "network": self.network(elapsed),
            "processes": self.processes(),
        }
