"""
bot/state.py

Runtime session types shared by the evaluator cog and the audio relay.
Nothing here is persisted; a snapshot is rebuilt on every evaluation tick.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING   = "connecting"
    READY        = "ready"
    RECONNECTING = "reconnecting"
    DESTROYED    = "destroyed"


class PlaybackState(Enum):
    IDLE    = "idle"
    PLAYING = "playing"


@dataclass(frozen=True)
class ConditionSnapshot:
    live: bool = False
    user_present: bool = False

    @property
    def should_connect(self) -> bool:
        return self.live and self.user_present
