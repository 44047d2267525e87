"""
Background task that drops abandoned wizard sessions
"""
import asyncio
from typing import Optional

from dbms_advisor.core.config import Settings, get_settings
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.wizard_session import SessionStore
from dbms_advisor.services.wizard_service import get_session_store

logger = LoggingConfig.get_logger(__name__)


class SessionEvictionMonitor:
    """Periodically evicts sessions idle longer than SESSION_TTL_SECONDS, for every transport"""

    def __init__(self, store: SessionStore, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store = store
        self.running = False
        self.check_interval = self.settings.session_sweep_interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the eviction loop"""
        if self.running:
            logger.warning("Session eviction monitor is already running")
            return

        self.running = True
        logger.info("Starting session eviction monitor...")
        self._task = asyncio.create_task(self._monitor_loop())

    async def stop(self):
        """Stop the eviction loop"""
        self.running = False
        logger.info("Stopping session eviction monitor...")
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _monitor_loop(self):
        while self.running:
            self.sweep_once()
            await asyncio.sleep(self.check_interval)

    def sweep_once(self) -> int:
        try:
            return self.store.evict_idle(self.settings.session_ttl_seconds)
        except Exception as e:
            logger.error(f"Error evicting idle sessions: {e}", exc_info=True)
            return 0


# Global monitor instance
_eviction_monitor: Optional[SessionEvictionMonitor] = None


def get_eviction_monitor() -> SessionEvictionMonitor:
    """Get or create the monitor for the shared session store"""
    global _eviction_monitor
    if _eviction_monitor is None:
        _eviction_monitor = SessionEvictionMonitor(get_session_store())
    return _eviction_monitor
