from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Set

from .common import PlaybackStatus


class ResumeStack:
    """LIFO of auto-paused endpoint ids, most recent first, never holding duplicates."""

    def __init__(self):
        self._items: List[str] = []

    def push(self, endpoint_id: str) -> None:
        self.remove(endpoint_id)
        self._items.insert(0, endpoint_id)

    def remove(self, endpoint_id: str) -> None:
        self._items = [item for item in self._items if item != endpoint_id]

    def pop(self) -> Optional[str]:
        if not self._items:
            return None
        return self._items.pop(0)

    def __contains__(self, endpoint_id: object) -> bool:
        return endpoint_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items))


class EndpointRegistry:
    """
    Last-known playback status per endpoint, plus the auto-paused flags and the
    resume stack. Pure bookkeeping: it never talks to the bus.
    """

    def __init__(self):
        self._status: Dict[str, PlaybackStatus] = {}
        self._auto_paused: Set[str] = set()
        self.stack = ResumeStack()

    def upsert(self, endpoint_id: str, status: PlaybackStatus) -> None:
        if not endpoint_id:
            raise ValueError("endpoint id must be a non-empty string")
        self._status[endpoint_id] = PlaybackStatus(status)

    def remove(self, endpoint_id: str) -> None:
        self._status.pop(endpoint_id, None)
        self._auto_paused.discard(endpoint_id)
        self.stack.remove(endpoint_id)

    def status(self, endpoint_id: str) -> Optional[PlaybackStatus]:
        return self._status.get(endpoint_id)

    def playing(self) -> List[str]:
        return [eid for eid, status in self._status.items() if status == PlaybackStatus.PLAYING]

    def any_playing(self) -> bool:
        return any(status == PlaybackStatus.PLAYING for status in self._status.values())

    def mark_auto_paused(self, endpoint_id: str) -> None:
        self._auto_paused.add(endpoint_id)

    def clear_auto_paused(self, endpoint_id: str) -> None:
        self._auto_paused.discard(endpoint_id)

    def is_auto_paused(self, endpoint_id: str) -> bool:
        return endpoint_id in self._auto_paused

    def __contains__(self, endpoint_id: object) -> bool:
        return endpoint_id in self._status

    def __len__(self) -> int:
        return len(self._status)
