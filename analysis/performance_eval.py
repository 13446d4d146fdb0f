# analysis/performance_eval.py
# Records per-request timings, byte counts, and outcomes for the MP3 server and client.

import csv          # CSV export of metrics
import json         # meta column serialization
import threading    # recorder is shared by session threads
import time         # timers and timestamps

# Column order for CSV export.
FIELDNAMES = ["operation", "outcome", "bytes", "seconds", "rate_MBps", "source", "timestamp", "meta"]

OUTCOME_OK = "ok"
OUTCOME_ERROR = "error"


#### Simple Timer ####
def timed():
    """
    Start a timer and return a callable giving elapsed seconds.

    Usage:
        timer = timed()
        ... serve one session ...
        elapsed = timer()
    """
    start = time.perf_counter()

    def elapsed():
        return time.perf_counter() - start

    return elapsed


#### Metric Recorder ####
class PerfRecorder:
    """
    Thread-safe, in-memory list of measurements.

    One record per finished operation:
      - operation: 'LIST', 'SEARCH', 'DOWNLOAD', 'session', 'server_uptime', ...
      - outcome:   'ok' or 'error'
      - bytes:     payload bytes moved (0 when nothing was transferred)
      - seconds:   duration
      - rate_MBps: bytes / seconds in MB/s, None without bytes or time
      - source:    'server' or 'client'
      - timestamp: wall-clock time the record was added
      - meta:      optional dict (filename, attempts, error code, ...)
    """

    def __init__(self, source="server"):
        self.source = source
        self._lock = threading.Lock()
        self._records = []

    def record(self, operation, seconds, bytes_count=0, outcome=OUTCOME_OK, meta=None):
        """Add one measurement and return it."""
        seconds = float(seconds)
        rate = None
        if bytes_count and seconds > 0:
            rate = (bytes_count / (1024 * 1024)) / seconds

        record = {
            "operation": str(operation),
            "outcome": outcome,
            "bytes": int(bytes_count),
            "seconds": seconds,
            "rate_MBps": rate,
            "source": self.source,
            "timestamp": time.time(),
        }
        if meta:
            record["meta"] = dict(meta)

        with self._lock:
            self._records.append(record)
        return record

    def snapshot(self):
        """Copy of all records."""
        with self._lock:
            return list(self._records)

    def clear(self):
        with self._lock:
            self._records.clear()

    def summary(self):
        """
        Aggregate records per operation.

        Returns:
            dict[str, dict]: operation -> {count, errors, bytes, mean_seconds}
        """
        totals = {}
        for rec in self.snapshot():
            entry = totals.setdefault(
                rec["operation"],
                {"count": 0, "errors": 0, "bytes": 0, "seconds": 0.0},
            )
            entry["count"] += 1
            entry["bytes"] += rec["bytes"]
            entry["seconds"] += rec["seconds"]
            if rec["outcome"] != OUTCOME_OK:
                entry["errors"] += 1

        for entry in totals.values():
            entry["mean_seconds"] = entry.pop("seconds") / entry["count"]
        return totals

    def to_csv(self, filepath):
        """
        Write all records to a CSV file, one row per record.

        The meta dict is stored as sorted-key JSON.
        """
        with open(filepath, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
            writer.writeheader()
            for rec in self.snapshot():
                row = dict(rec)
                if "meta" in row:
                    row["meta"] = json.dumps(row["meta"], sort_keys=True, default=str)
                writer.writerow(row)
