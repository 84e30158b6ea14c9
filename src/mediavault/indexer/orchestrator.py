"""Scan orchestrator: admission control, periodic trigger and job notifications.

A single scheduler thread owns the FIFO job queue and the periodic timer.
Admitted jobs run on their own worker thread; at most ``concurrent_workers``
jobs run at once and never two for the same user.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Union

from .catalog import MediaCatalog
from .errors import InvalidArgumentError, NotFoundError
from .models import JobState, ScannerResult, ThumbnailFilter
from .notifications import NotificationBroker, scan_notification_key
from .scan_job import ScanJob
from .thumbnails import ThumbnailGenerator

logger = logging.getLogger(__name__)

# Auto-close timeout (milliseconds) of terminal scan messages
TERMINAL_MESSAGE_TIMEOUT = 5000

JobFactory = Callable[..., ScanJob]


class ScanOrchestrator:
    """
    Owns the scan worker pool and the periodic scan trigger.

    Scanner settings (worker count, periodic interval, thumbnail filter)
    are read from the catalog's site info on ``start()`` and written back by
    the admin setters. Changes apply to the next scheduling decision; jobs
    already running are never interrupted.

    Args:
        catalog: Media catalog
        broker: Notification broker receiving job progress
        job_factory: Callable ``(user_id, regenerate_thumbnails, on_progress) -> ScanJob``
        thumbnails: Generator whose filter follows the thumbnail method setting
    """

    def __init__(
        self,
        catalog: MediaCatalog,
        broker: NotificationBroker,
        job_factory: JobFactory,
        thumbnails: Optional[ThumbnailGenerator] = None,
    ):
        self.catalog = catalog
        self.broker = broker
        self.job_factory = job_factory
        self.thumbnails = thumbnails

        self._condition = threading.Condition()
        self._queue: Deque[ScanJob] = deque()
        self._queued: Dict[str, ScanJob] = {}
        self._running: Dict[str, ScanJob] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._last_results: Dict[str, ScannerResult] = {}
        self._global_jobs: List[ScanJob] = []

        self._concurrent_workers = 1
        self._periodic_scan_interval = 0
        self._next_periodic_scan: Optional[float] = None

        self._published_progress: Dict[str, float] = {}
        self._progress_lock = threading.Lock()

        self._scheduler: Optional[threading.Thread] = None
        self._stopping = False

    # Lifecycle

    def start(self):
        """Load scanner settings and start the scheduler thread."""
        site_info = self.catalog.get_site_info()
        with self._condition:
            if self._scheduler is not None:
                return
            self._concurrent_workers = site_info.concurrent_workers
            self._set_interval_locked(site_info.periodic_scan_interval)
            self._stopping = False
            self._scheduler = threading.Thread(
                target=self._schedule_loop, name="scan-scheduler", daemon=True
            )
            self._scheduler.start()
        if self.thumbnails is not None:
            self.thumbnails.set_filter(site_info.thumbnail_method)

        logger.info(
            f"Scan orchestrator started: {{'concurrent_workers': {site_info.concurrent_workers}, "
            f"'periodic_scan_interval': {site_info.periodic_scan_interval}, "
            f"'thumbnail_method': {site_info.thumbnail_method.value!r}}}"
        )

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop scheduling, drop queued jobs and cancel running ones.

        Args:
            wait: Join the worker threads of running jobs
            timeout: Per-thread join timeout
        """
        with self._condition:
            self._stopping = True
            dropped = list(self._queue)
            self._queue.clear()
            self._queued.clear()
            running = list(self._running.values())
            threads = list(self._threads.values())
            scheduler, self._scheduler = self._scheduler, None
            self._condition.notify_all()

        for job in dropped:
            job.finish_without_running("Scan cancelled: scanner shutting down")
            self._record_result(job)
            self._publish_terminal(job)
        for job in running:
            job.cancel()

        if scheduler is not None:
            scheduler.join(timeout)
        if wait:
            for thread in threads:
                thread.join(timeout)

        logger.info(f"Scan orchestrator stopped: {{'cancelled_running': {len(running)}, 'dropped_queued': {len(dropped)}}}")

    # Scan requests

    def scan_all(self) -> List[ScanJob]:
        """Enqueue one scan per user with root paths."""
        user_ids = self.catalog.users_with_root_paths()
        with self._condition:
            jobs = self._scan_all_locked(user_ids)
            self._condition.notify_all()
        return jobs

    def _scan_all_locked(self, user_ids: List[str]) -> List[ScanJob]:
        jobs = [self._enqueue_locked(user_id) for user_id in user_ids]
        self._global_jobs = jobs
        logger.info(f"Queued scan of all users: {{'jobs': {len(jobs)}}}")
        return jobs

    def scan_user(self, user_id: str, regenerate_thumbnails: bool = False) -> ScanJob:
        """
        Enqueue a scan of one user.

        A request for a user whose scan is already queued or running returns
        that job instead of starting another walk.

        Raises:
            NotFoundError: Unknown user, or the user has no root paths
        """
        self.catalog.get_user(user_id)
        if not self.catalog.list_root_albums(user_id):
            raise NotFoundError("User has no root paths", user_id=user_id)

        with self._condition:
            job = self._enqueue_locked(user_id, regenerate_thumbnails)
            self._condition.notify_all()
        return job

    def _enqueue_locked(self, user_id: str, regenerate_thumbnails: bool = False) -> ScanJob:
        for existing in (self._queued.get(user_id), self._running.get(user_id)):
            if existing is not None and existing.state != JobState.FINISHED:
                logger.debug(f"Scan already in flight: {{'user_id': {user_id!r}, 'state': {existing.state.value!r}}}")
                return existing

        job = self.job_factory(
            user_id,
            regenerate_thumbnails=regenerate_thumbnails,
            on_progress=self._publish_progress,
        )
        self._queue.append(job)
        self._queued[user_id] = job
        return job

    def cancel_user_scan(self, user_id: str) -> bool:
        """
        Cancel the queued or running scan of a user.

        Returns:
            False if the user has no scan in flight
        """
        with self._condition:
            job = self._queued.pop(user_id, None)
            if job is not None:
                self._queue.remove(job)
                queued = True
            else:
                job = self._running.get(user_id)
                queued = False
            self._condition.notify_all()

        if job is None:
            return False

        job.cancel()
        if queued:
            job.finish_without_running("Scan cancelled before it started")
            self._record_result(job)
            self._publish_terminal(job)
        return True

    # Status

    def job_for_user(self, user_id: str) -> Optional[ScanJob]:
        with self._condition:
            return self._running.get(user_id) or self._queued.get(user_id)

    def last_result(self, user_id: str) -> Optional[ScannerResult]:
        with self._condition:
            return self._last_results.get(user_id)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no job is queued or running. Returns False on timeout."""
        with self._condition:
            return self._condition.wait_for(
                lambda: not self._queue and not self._running, timeout
            )

    def scanner_status(self) -> dict:
        with self._condition:
            return {
                "concurrent_workers": self._concurrent_workers,
                "periodic_scan_interval": self._periodic_scan_interval,
                "running": sorted(self._running),
                "queued": [job.user_id for job in self._queue],
                "global_scan_in_flight": self._global_scan_in_flight(),
            }

    def _global_scan_in_flight(self) -> bool:
        return any(job.state != JobState.FINISHED for job in self._global_jobs)

    # Settings

    def set_concurrent_workers(self, workers: int) -> int:
        """
        Raises:
            InvalidArgumentError: workers < 1
        """
        if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
            raise InvalidArgumentError("Concurrent workers must be at least 1", workers=workers)

        self.catalog.update_site_info(concurrent_workers=workers)
        with self._condition:
            self._concurrent_workers = workers
            self._condition.notify_all()
        logger.info(f"Concurrent workers changed: {{'workers': {workers}}}")
        return workers

    def set_periodic_scan_interval(self, seconds: int) -> int:
        """
        Set the periodic full scan interval; 0 disables it.

        Raises:
            InvalidArgumentError: seconds < 0
        """
        if not isinstance(seconds, int) or isinstance(seconds, bool) or seconds < 0:
            raise InvalidArgumentError("Periodic scan interval must not be negative", seconds=seconds)

        self.catalog.update_site_info(periodic_scan_interval=seconds)
        with self._condition:
            self._set_interval_locked(seconds)
            self._condition.notify_all()
        logger.info(f"Periodic scan interval changed: {{'seconds': {seconds}}}")
        return seconds

    def _set_interval_locked(self, seconds: int):
        self._periodic_scan_interval = seconds
        self._next_periodic_scan = time.monotonic() + seconds if seconds > 0 else None

    def set_thumbnail_downsample_method(self, method: Union[ThumbnailFilter, str]) -> ThumbnailFilter:
        """
        Change the filter used by future thumbnail generations.

        Raises:
            InvalidArgumentError: Unknown filter name
        """
        try:
            thumbnail_filter = ThumbnailFilter(method)
        except ValueError:
            raise InvalidArgumentError("Unknown thumbnail filter", method=str(method)) from None

        self.catalog.update_site_info(thumbnail_method=thumbnail_filter)
        if self.thumbnails is not None:
            self.thumbnails.set_filter(thumbnail_filter)
        logger.info(f"Thumbnail downsample method changed: {{'method': {thumbnail_filter.value!r}}}")
        return thumbnail_filter

    # Scheduling

    def _schedule_loop(self):
        try:
            with self._condition:
                while not self._stopping:
                    self._fire_periodic_locked()
                    self._admit_locked()
                    self._condition.wait(self._wait_timeout_locked())
        finally:
            self.catalog.release_connection()

    def _wait_timeout_locked(self) -> Optional[float]:
        if self._next_periodic_scan is None:
            return None
        return max(self._next_periodic_scan - time.monotonic(), 0.0)

    def _fire_periodic_locked(self):
        if self._next_periodic_scan is None or time.monotonic() < self._next_periodic_scan:
            return
        self._next_periodic_scan = time.monotonic() + self._periodic_scan_interval
        if self._global_scan_in_flight():
            logger.info("Skipping periodic scan: previous full scan still in flight")
            return
        try:
            self._scan_all_locked(self.catalog.users_with_root_paths())
        except Exception as e:
            logger.error(f"Periodic scan failed to start: {{'error': {str(e)!r}}}", exc_info=True)

    def _admit_locked(self):
        while self._queue and len(self._running) < self._concurrent_workers:
            job = self._queue.popleft()
            del self._queued[job.user_id]
            self._running[job.user_id] = job
            thread = threading.Thread(
                target=self._run_job,
                args=(job,),
                name=f"scan-{job.user_id[:8]}",
                daemon=True,
            )
            self._threads[job.job_id] = thread
            thread.start()
            logger.debug(f"Admitted scan job: {{'user_id': {job.user_id!r}, 'running': {len(self._running)}}}")

    def _run_job(self, job: ScanJob):
        try:
            job.run()
        except Exception as e:
            # ScanJob.run records its own failures; this only guards the worker thread
            logger.error(f"Scan job crashed: {{'user_id': {job.user_id!r}, 'error': {str(e)!r}}}", exc_info=True)
            job.finish_without_running(f"Scan failed: {e}")
        finally:
            try:
                self._record_result(job)
                self._publish_terminal(job)
            finally:
                self.catalog.release_connection()
                with self._condition:
                    if self._running.get(job.user_id) is job:
                        del self._running[job.user_id]
                    self._threads.pop(job.job_id, None)
                    self._condition.notify_all()

    # Notifications

    def _record_result(self, job: ScanJob):
        with self._condition:
            self._last_results[job.user_id] = job.result

    def _publish_progress(self, job: ScanJob):
        with self._progress_lock:
            value = max(job.progress, self._published_progress.get(job.job_id, 0.0))
            self._published_progress[job.job_id] = value
        stats = job.statistics
        self.broker.progress(
            scan_notification_key(job.user_id),
            header="Scanning media",
            content=f"{stats.processed} files processed",
            progress=value,
        )

    def _publish_terminal(self, job: ScanJob):
        result = job.result
        key = scan_notification_key(job.user_id)
        self.broker.message(
            key,
            header="Scan completed" if result.success else "Scan failed",
            content=result.message,
            positive=result.success,
            negative=not result.success,
            timeout=TERMINAL_MESSAGE_TIMEOUT,
        )
        self.broker.close_key(key)
        with self._progress_lock:
            self._published_progress.pop(job.job_id, None)
