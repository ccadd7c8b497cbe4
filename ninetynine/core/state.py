"""Client state reducer and the state machine that owns it."""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from ninetynine.models.action import Action, ActionType
from ninetynine.models.room import GameRoom, GameTurn

logger = logging.getLogger(__name__)


class GameState(Enum):
    """Screens the local client can be on."""
    MENU = "MENU"
    LOBBY = "LOBBY"
    PLAYING = "PLAYING"
    FINISHED = "FINISHED"
    CAMERA = "CAMERA"


@dataclass(frozen=True)
class ClientState:
    """Local view of the shared game. Only the reducer produces new ones."""

    connected: bool = False
    player_name: str = ""
    game_room: Optional[GameRoom] = None
    game_history: tuple = ()
    current_turn: Optional[GameTurn] = None
    error: Optional[str] = None
    game_state: GameState = GameState.MENU
    countdown: int = 0
    is_counting_down: bool = False
    should_show_join_mode: bool = False


INITIAL_STATE = ClientState()


def reduce(state: ClientState, action: Action) -> ClientState:
    """
    Apply an action to a state and return the resulting state.

    Pure: the input state is never mutated and no side effects happen here.
    Unknown action types return the state unchanged.

    Raises:
        ValueError: If SET_GAME_STATE carries a value outside GameState
    """
    kind = action.type
    payload = action.payload

    if kind == ActionType.SET_CONNECTED:
        return replace(state, connected=bool(payload))
    if kind == ActionType.SET_PLAYER_NAME:
        return replace(state, player_name=payload)
    if kind == ActionType.SET_GAME_ROOM:
        return replace(state, game_room=payload)
    if kind == ActionType.SET_GAME_STATE:
        return replace(state, game_state=GameState(payload))
    if kind == ActionType.ADD_GAME_TURN:
        return replace(state, game_history=state.game_history + (payload,), current_turn=payload)
    if kind == ActionType.SET_ERROR:
        return replace(state, error=payload)
    if kind == ActionType.CLEAR_ERROR:
        return replace(state, error=None)
    if kind == ActionType.START_COUNTDOWN:
        return replace(state, countdown=max(0, int(payload)), is_counting_down=True)
    if kind == ActionType.UPDATE_COUNTDOWN:
        return replace(state, countdown=max(0, int(payload)))
    if kind == ActionType.END_COUNTDOWN:
        return replace(state, countdown=0, is_counting_down=False)
    if kind == ActionType.CLEAR_GAME_HISTORY:
        return replace(state, game_history=(), current_turn=None)
    if kind == ActionType.SET_SHOULD_SHOW_JOIN_MODE:
        return replace(state, should_show_join_mode=bool(payload))
    if kind == ActionType.RESET_GAME:
        return replace(INITIAL_STATE, connected=state.connected, player_name=state.player_name)
    return state


Listener = Callable[[ClientState, Action], None]


class StateMachine:
    """
    Single source of truth for the local game view.

    Actions are applied one at a time in dispatch order; listeners are
    notified after each change.
    """

    def __init__(self, initial_state: ClientState = INITIAL_STATE):
        self._state = initial_state
        self._listeners: List[Listener] = []

    @property
    def state(self) -> ClientState:
        return self._state

    def dispatch(self, action: Action) -> ClientState:
        previous = self._state
        self._state = reduce(previous, action)
        logger.debug(f"{action!r}: {previous.game_state.value} -> {self._state.game_state.value}")
        if self._state != previous:
            for listener in list(self._listeners):
                try:
                    listener(self._state, action)
                except Exception as e:
                    logger.error(f"State listener failed on {action.type.value}: {str(e)}")
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
