"""Scheduled pipeline trigger with a busy guard"""

import fcntl
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .models import ProcessingResult
from .pipeline import EpisodeProcessor
from .utils.logging import get_logger

logger = get_logger(__name__)


class RunLock:
    """Advisory lock file shared by every process that triggers scheduled runs.

    The OS drops the lock when the holder exits, so a crashed run never
    leaves a stale lock behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> bool:
        """Take the lock without waiting; False when another holder has it"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False

        os.ftruncate(fd, 0)
        os.write(fd, f"PID: {os.getpid()}\nStarted: {datetime.now().isoformat()}\n".encode())
        self._fd = fd
        logger.info(f"Pipeline lock acquired: {self.path}")
        return True

    def release(self):
        if self._fd is None:
            return
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None
        logger.info("Pipeline lock released")


class PipelineScheduler:
    """Entry point for a cron-like trigger.

    A scheduled run is skipped, not queued, while another scheduled run is
    still in flight, whether in this process or, when ``lock_path`` is set,
    in another one. Manual runs go straight to the processor and are not
    guarded.
    """

    def __init__(self, processor: EpisodeProcessor, lock_path: Optional[Path] = None):
        self.processor = processor
        self.lock = RunLock(lock_path) if lock_path else None
        self.is_running = False
        self.last_run_time: Optional[datetime] = None
        self.last_run_status: Optional[str] = None

    async def run_scheduled(self) -> Optional[Tuple[int, List[ProcessingResult]]]:
        if self.is_running:
            logger.warning("Previous scheduled task still running, skipping")
            return None
        if self.lock and not self.lock.acquire():
            logger.warning(f"Scheduled task running in another process ({self.lock.path}), skipping")
            return None

        self.is_running = True
        self.last_run_time = datetime.now()
        logger.info("Scheduled pipeline run started")
        try:
            task_log_id, results = await self.processor.run_full_pipeline()
            self.last_run_status = 'completed'
            return task_log_id, results
        except Exception as e:
            self.last_run_status = f'failed: {e}'
            logger.error(f"Scheduled pipeline run failed: {e}")
            raise
        finally:
            self.is_running = False
            if self.lock:
                self.lock.release()

    def status(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'last_run_time': self.last_run_time.isoformat() if self.last_run_time else None,
            'last_run_status': self.last_run_status,
        }
