# digpaper/client/connectivity.py
import logging
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

HealthCheck = Callable[[], Awaitable[bool]]
ConnectivityListener = Callable[[bool], object]


class ConnectivityMonitor:
    """
    Tracks whether the intake server is reachable.

    State is learnt either by a health check (``check``) or from a platform signal
    (``set_online``). Listeners are called with the new state on every change;
    the first observation only sets the state.
    """

    def __init__(self, health_check: Optional[HealthCheck] = None):
        self.health_check = health_check
        self.online: Optional[bool] = None
        self._listeners: List[ConnectivityListener] = []

    def add_listener(self, listener: ConnectivityListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_online(self, online: bool) -> None:
        previous, self.online = self.online, bool(online)
        if previous is None or previous == self.online:
            return
        logger.info("Connectivity %s", "restored" if self.online else "lost")
        for listener in list(self._listeners):
            try:
                listener(self.online)
            except Exception:
                logger.exception("Connectivity listener %r failed", listener)

    async def check(self) -> bool:
        if self.health_check is None:
            return bool(self.online)
        try:
            online = await self.health_check()
        except Exception as e:
            logger.warning("Connectivity check failed: %s", e)
            online = False
        self.set_online(online)
        return self.online
