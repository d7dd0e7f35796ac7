import csv
import logging
import os
from threading import Lock

REPORT_COLUMNS = [
    "URL",
    "File Name",
    "Outcome",
    "Status Code",
    "Bytes",
    "Duration (s)",
    "Error",
]


class OutcomeReport:
    """
    CSV log with one row per work item, appended as each item finishes so
    partial results survive an interrupted run. An existing file is appended
    to; a new one gets the header row first.
    """

    def __init__(self, csv_filename):
        self.csv_filename = csv_filename
        self._lock = Lock()

        with self._lock:
            parent = os.path.dirname(csv_filename)
            if parent:
                os.makedirs(parent, exist_ok=True)
            if not os.path.exists(csv_filename):
                with open(csv_filename, "w", newline="", encoding="utf-8") as f:
                    writer = csv.writer(f)
                    writer.writerow(REPORT_COLUMNS)
                logging.info(f"Created new CSV report: {csv_filename}")

    def append(self, outcome):
        with self._lock:
            with open(self.csv_filename, "a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow([
                    outcome.url,
                    outcome.file_name,
                    outcome.status,
                    "" if outcome.status_code is None else outcome.status_code,
                    outcome.bytes_written,
                    f"{outcome.duration:.3f}",
                    outcome.error,
                ])
