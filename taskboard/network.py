"""Online/offline signal of the host environment."""

from __future__ import annotations

from typing import Callable

from taskboard.observability import get_logger

NetworkListener = Callable[[bool], None]

log = get_logger("network")


class NetworkMonitor:
    """Read-only reachability flag with change listeners."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[NetworkListener] = []

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        log.info("network_status_changed", online=online)
        for listener in list(self._listeners):
            listener(online)

    def add_listener(self, listener: NetworkListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove
