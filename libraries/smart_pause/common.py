from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

APP_NAME = "Smart-Pause"

MPRIS_PREFIX = "org.mpris.MediaPlayer2."
MPRIS_PATH = "/org/mpris/MediaPlayer2"
MPRIS_PLAYER_IFACE = "org.mpris.MediaPlayer2.Player"

DEFAULT_RESUME_DELAY_MS = 600
MAX_RESUME_DELAY_MS = 2000


def log(message: str) -> None:
    print(f"[{APP_NAME}] {message}", flush=True)


class PlaybackStatus(str, Enum):
    PLAYING = "Playing"
    PAUSED = "Paused"
    STOPPED = "Stopped"


def parse_status(value) -> Optional[PlaybackStatus]:
    """Map a raw MPRIS ``PlaybackStatus`` string to the enum, or None if unknown."""
    if isinstance(value, PlaybackStatus):
        return value
    if not isinstance(value, str):
        return None
    try:
        return PlaybackStatus(value.strip())
    except ValueError:
        return None


class Command(str, Enum):
    PAUSE = "pause"
    PLAY = "play"


# -------------------- Engine events --------------------

@dataclass(frozen=True)
class StatusChanged:
    endpoint_id: str
    status: object


@dataclass(frozen=True)
class EndpointAppeared:
    endpoint_id: str
    status: object = None


@dataclass(frozen=True)
class EndpointVanished:
    endpoint_id: str


@dataclass(frozen=True)
class CommandFinished:
    endpoint_id: str
    command: Command
    ok: bool


@dataclass(frozen=True)
class ResumeDue:
    endpoint_id: str


@dataclass(frozen=True)
class SettingsChanged:
    enabled: Optional[bool] = None
    resume_delay_ms: Optional[int] = None


@dataclass
class EngineSnapshot:
    enabled: bool
    tracked: int = 0
    playing: list = field(default_factory=list)
    stack: list = field(default_factory=list)

    def describe(self) -> str:
        if not self.enabled:
            return "disabled"
        if not self.tracked:
            return "no players"
        return f"{self.tracked} players, {len(self.playing)} playing, {len(self.stack)} queued"
