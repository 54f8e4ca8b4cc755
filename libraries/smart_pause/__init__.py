from .backend import build_player_bus
from .common import EngineSnapshot, PlaybackStatus, parse_status
from .engine import ArbitrationEngine
from .registry import EndpointRegistry, ResumeStack

__all__ = [
    "ArbitrationEngine",
    "EndpointRegistry",
    "EngineSnapshot",
    "PlaybackStatus",
    "ResumeStack",
    "build_player_bus",
    "parse_status",
]
