"""Action models consumed by the client state reducer."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ActionType(Enum):
    """Types of actions that can be applied to the client state."""
    SET_CONNECTED = "SET_CONNECTED"
    SET_PLAYER_NAME = "SET_PLAYER_NAME"
    SET_GAME_ROOM = "SET_GAME_ROOM"
    SET_GAME_STATE = "SET_GAME_STATE"
    ADD_GAME_TURN = "ADD_GAME_TURN"
    SET_ERROR = "SET_ERROR"
    CLEAR_ERROR = "CLEAR_ERROR"
    START_COUNTDOWN = "START_COUNTDOWN"
    UPDATE_COUNTDOWN = "UPDATE_COUNTDOWN"
    END_COUNTDOWN = "END_COUNTDOWN"
    CLEAR_GAME_HISTORY = "CLEAR_GAME_HISTORY"
    SET_SHOULD_SHOW_JOIN_MODE = "SET_SHOULD_SHOW_JOIN_MODE"
    RESET_GAME = "RESET_GAME"


@dataclass(frozen=True)
class Action:
    """A single state transition request."""

    type: ActionType
    payload: Any = None

    def __repr__(self) -> str:
        return f"Action(type={self.type.value}, payload={self.payload!r})"
