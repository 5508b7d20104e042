"""
Daily job runner

Runs change detection and then recommendation generation once a day at fixed
UTC hours. Only one runner may be started per process.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_start_lock = threading.Lock()
_started = False


def next_run_at(hour: int, now: datetime) -> datetime:
    """Next occurrence of hour:00 UTC strictly after now"""
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class DailyJobRunner:
    """
    Schedules the engine's daily jobs

    Jobs:
    1. Bid change detection (default 02:00 UTC)
    2. Recommendation generation for every configured market (default 03:00 UTC)
    """

    def __init__(self, engine, config: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], datetime] = None):
        config = config or {}
        self.engine = engine
        self.logger = logging.getLogger(__name__)
        self.detection_hour = int(config.get('change_detection_hour', 2))
        self.recommendation_hour = int(config.get('recommendation_hour', 3))
        self.markets = list(config.get('markets', []))
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.run_stats = {
            'detection_runs': 0,
            'recommendation_runs': 0,
            'last_detection_run': None,
            'last_recommendation_run': None,
            'errors': [],
        }

    def start(self, background: bool = True) -> bool:
        """
        Start the runner once per process

        Returns:
            False if a runner was already started (the call is a no-op)
        """
        global _started
        with _start_lock:
            if _started:
                self.logger.info("Scheduler already initialized, skipping duplicate start")
                return False
            _started = True

        self.logger.info(f"Bid change detection scheduled daily at {self.detection_hour:02d}:00 UTC")
        self.logger.info(f"Bid recommendations scheduled daily at {self.recommendation_hour:02d}:00 UTC")

        if background:
            self._thread = threading.Thread(target=self.run_forever, name='daily-job-runner', daemon=True)
            self._thread.start()
        else:
            self.run_forever()
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def run_change_detection(self) -> None:
        self.logger.info(f"Running daily bid change detection at {self.clock().isoformat()}")
        try:
            result = self.engine.run_change_detection()
            self.run_stats['detection_runs'] += 1
            self.run_stats['last_detection_run'] = self.clock()
            self.logger.info(f"Bid change detection complete: {result.changes_detected} changes "
                             f"({', '.join(f'{k}: {v}' for k, v in result.by_source.items())})")
        except Exception as e:
            self.logger.exception(f"Bid change detection failed: {e}")
            self.run_stats['errors'].append({'job': 'change_detection', 'error': str(e), 'at': self.clock()})

    def run_recommendations(self) -> None:
        self.logger.info(f"Running daily bid recommendations at {self.clock().isoformat()}")
        try:
            result = self.engine.generate_daily_recommendations(self.markets or None)
            self.run_stats['recommendation_runs'] += 1
            self.run_stats['last_recommendation_run'] = self.clock()
            self.logger.info(f"Daily recommendations generated: {result['total']} recommendations "
                             f"across {result['markets']} markets")
        except Exception as e:
            self.logger.exception(f"Daily recommendations generation failed: {e}")
            self.run_stats['errors'].append({'job': 'recommendations', 'error': str(e), 'at': self.clock()})

    def run_forever(self) -> None:
        now = self.clock()
        next_detection = next_run_at(self.detection_hour, now)
        next_recommendation = next_run_at(self.recommendation_hour, now)

        while not self.stop_event.is_set():
            now = self.clock()

            if now >= next_detection:
                self.run_change_detection()
                next_detection = next_run_at(self.detection_hour, now)
                self.logger.info(f"Next change detection scheduled for: {next_detection.strftime('%Y-%m-%d %H:%M:%S')} UTC")

            if now >= next_recommendation:
                self.run_recommendations()
                next_recommendation = next_run_at(self.recommendation_hour, now)
                self.logger.info(f"Next recommendation run scheduled for: {next_recommendation.strftime('%Y-%m-%d %H:%M:%S')} UTC")

            sleep_seconds = min(
                (next_detection - now).total_seconds(),
                (next_recommendation - now).total_seconds(),
                60
            )
            if sleep_seconds > 0:
                self.stop_event.wait(sleep_seconds)

        self.logger.info("Scheduled execution stopped")
