"""Progress tracking for media scanning.

The total is an estimate that grows while the directory walk discovers
deeper directories, so the fraction reported here may dip slightly.
"""

import logging
import threading
import time

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Tracks scanning progress against a growing estimate of the total.

    Features:
    - Files processed count
    - Estimated total, refreshed as directories are listed
    - Processing rate (files/sec) and estimated time remaining
    - Periodic logging (every N files)
    """

    def __init__(self, log_interval: int = 100, label: str = "scan"):
        """Initialize progress tracker.

        Args:
            log_interval: Log progress every N files
            label: Name used in log lines (e.g. the user being scanned)
        """
        self.log_interval = log_interval
        self.label = label

        self.files_processed = 0
        self.estimated_total = 0
        self.start_time = time.time()
        self._lock = threading.Lock()

    def discover(self, count: int) -> None:
        """Add newly discovered candidate files to the estimate."""
        with self._lock:
            self.estimated_total += count

    def increment(self, count: int = 1) -> None:
        """Increment files processed counter."""
        with self._lock:
            self.files_processed += count
            processed = self.files_processed

        if processed % self.log_interval == 0:
            self._log_progress()

    @property
    def fraction(self) -> float:
        """Processed / estimated total, within [0, 1]."""
        with self._lock:
            if self.estimated_total <= 0:
                return 0.0
            return min(self.files_processed / self.estimated_total, 1.0)

    def get_progress(self) -> dict:
        """Get current progress statistics."""
        with self._lock:
            processed = self.files_processed
            total = self.estimated_total

        elapsed_time = time.time() - self.start_time
        rate = processed / elapsed_time if elapsed_time > 0 else 0.0
        remaining_files = max(total - processed, 0)
        eta_seconds = remaining_files / rate if rate > 0 else 0.0

        return {
            "estimated_total": total,
            "files_processed": processed,
            "remaining_files": remaining_files,
            "percentage": (processed / total) * 100 if total > 0 else 0.0,
            "elapsed_seconds": elapsed_time,
            "rate_files_per_sec": rate,
            "eta_seconds": eta_seconds,
        }

    def _log_progress(self) -> None:
        progress = self.get_progress()
        logger.info(
            f"Progress: {{'scan': {self.label!r}, 'processed': {progress['files_processed']}, "
            f"'estimated_total': {progress['estimated_total']}, "
            f"'percentage': {progress['percentage']:.1f}, "
            f"'files_per_sec': {progress['rate_files_per_sec']:.1f}, "
            f"'eta': {self._format_time(progress['eta_seconds'])!r}}}"
        )

    def log_final_summary(self) -> None:
        progress = self.get_progress()
        logger.info(
            f"Scan finished: {{'scan': {self.label!r}, 'processed': {progress['files_processed']}, "
            f"'elapsed': {self._format_time(progress['elapsed_seconds'])!r}, "
            f"'files_per_sec': {progress['rate_files_per_sec']:.1f}}}"
        )

    @staticmethod
    def _format_time(seconds: float) -> str:
        """Format seconds as 1h 2m 3s."""
        seconds = int(seconds)
        hours, remainder = divmod(seconds, 3600)
        minutes, secs = divmod(remainder, 60)
        if hours:
            return f"{hours}h {minutes}m {secs}s"
        if minutes:
            return f"{minutes}m {secs}s"
        return f"{secs}s"
