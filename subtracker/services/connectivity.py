"""
Online/offline signal.
The host (UI shell, OS hook, test) reports transitions; listeners fire only
when the state actually changes. There is no polling.
"""
import logging
from typing import Callable, List

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: ConnectivityListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as exc:
                logger.error("Connectivity listener %r failed: %s", listener, exc)

    def go_online(self) -> None:
        self.set_online(True)

    def go_offline(self) -> None:
        self.set_online(False)
