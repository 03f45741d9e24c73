import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Coroutine, List, Optional

from croniter import croniter

from jira_monitor.core.clock import Clock, as_utc, utcnow
from jira_monitor.core.config import Settings
from jira_monitor.services.queue_monitor import QueueMonitor

logger = logging.getLogger(__name__)


class CronLoop:
    """
    Déclencheur périodique sur l'event loop (pas de thread).

    Chaque exécution va jusqu'au bout avant que le prochain créneau soit
    calculé ; une exception est journalisée et la boucle continue.
    """

    def __init__(
        self,
        name: str,
        expression: str,
        callback: Callable[[], Awaitable[Any]],
        clock: Clock = utcnow,
        sleep_fn: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
    ):
        self.name = name
        self.expression = expression
        self.callback = callback
        self._clock = clock
        self._sleep_fn = sleep_fn
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_fire_time(self, after: datetime) -> datetime:
        return as_utc(croniter(self.expression, as_utc(after)).get_next(datetime))

    def start(self) -> bool:
        """Démarre la boucle ; renvoie False si elle tournait déjà."""
        if self.running:
            return False
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(), name=f"cron:{self.name}")
        logger.info("Cron '%s' démarré (%s)", self.name, self.expression)
        return True

    async def stop(self) -> bool:
        """Arrête la boucle ; renvoie False si elle était déjà arrêtée."""
        if not self.running:
            return False
        self._stop_event.set()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Cron '%s' arrêté", self.name)
        return True

    async def run_once(self) -> None:
        try:
            await self.callback()
        except Exception:
            logger.exception("Cron '%s' : exécution en échec, nouvelle tentative au prochain créneau", self.name)

    async def run(self) -> None:
        while not self._stop_event.is_set():
            now = self._clock()
            delay = (self.next_fire_time(now) - as_utc(now)).total_seconds()
            await self._sleep_fn(max(delay, 0.0))
            if self._stop_event.is_set():
                break
            await self.run_once()


class MonitorScheduler:
    """Les deux déclencheurs : vérification du token et recherche des issues."""

    def __init__(self, settings: Settings, monitor: QueueMonitor, clock: Clock = utcnow, sleep_fn=asyncio.sleep):
        self.loops: List[CronLoop] = [
            CronLoop("refresh", settings.REFRESH_CRON, monitor.check_and_refresh, clock, sleep_fn),
            CronLoop("fetch", settings.FETCH_CRON, monitor.fetch_and_process, clock, sleep_fn),
        ]

    @property
    def running(self) -> bool:
        return any(loop.running for loop in self.loops)

    def start(self) -> bool:
        started = [loop.start() for loop in self.loops]
        return any(started)

    async def stop(self) -> bool:
        stopped = [await loop.stop() for loop in self.loops]
        return any(stopped)
