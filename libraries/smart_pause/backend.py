from __future__ import annotations

import sys
from typing import List, Protocol, Tuple


class PlayerBus(Protocol):
    def start(self, sink) -> None: ...

    def stop(self) -> None: ...

    async def list_endpoints(self) -> List[Tuple[str, str]]: ...

    async def pause(self, endpoint_id: str) -> bool: ...

    async def play(self, endpoint_id: str) -> bool: ...


def build_player_bus(call_timeout_ms: int = 2000) -> PlayerBus:
    if sys.platform == "win32" or sys.platform == "darwin":
        raise RuntimeError("MPRIS players are only available on Linux desktops.")
    from .linux import GioPlayerBus

    return GioPlayerBus(call_timeout_ms=call_timeout_ms)
