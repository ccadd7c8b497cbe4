"""Explicit client session wiring the sync core together."""

import logging
from typing import Any, Awaitable, Callable, Optional

from ninetynine.config import Config
from ninetynine.core.dispatcher import CommandDispatcher
from ninetynine.core.exceptions import ConnectionFailedError, TransportError
from ninetynine.core.router import MessageRouter
from ninetynine.core.state import ClientState, GameState, Listener, StateMachine
from ninetynine.core.timers import TimerManager
from ninetynine.core.transport import TransportConnector
from ninetynine.models.action import Action, ActionType

logger = logging.getLogger(__name__)

CONNECT_FAILED = "Failed to connect to server"
INVALID_QR = "This QR code doesn't contain a valid room ID"


class GameSession:
    """
    One client's connection to the game server.

    Independent sessions share nothing, so several can run side by side
    (one per test, or several simulated players in one process).
    """

    def __init__(self, config=Config, socket_factory: Callable[[str], Awaitable[Any]] = None,
                 connector: Optional[TransportConnector] = None):
        self.config = config
        self.machine = StateMachine()
        self.timers = TimerManager(self.machine, config)
        self.connector = connector or TransportConnector(
            config.ws_url(),
            socket_factory,
            reconnect_delay=config.RECONNECT_DELAY_SEC,
            max_reconnect_delay=config.MAX_RECONNECT_DELAY_SEC,
            heartbeat_ms=config.HEARTBEAT_MS,
            handshake_timeout=config.HANDSHAKE_TIMEOUT_SEC,
        )
        self.router = MessageRouter(self.connector, self.machine, self.timers)
        self.dispatcher = CommandDispatcher(self.connector, self.machine, self.timers, self.router, config)
        self.router.dispatcher = self.dispatcher
        self.connector.on_connected = self._on_reconnected
        self.connector.on_connection_lost = self._on_connection_lost

    @property
    def state(self) -> ClientState:
        return self.machine.state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.machine.subscribe(listener)

    def _dispatch(self, kind: ActionType, payload: Any = None) -> ClientState:
        return self.machine.dispatch(Action(kind, payload))

    async def start(self) -> bool:
        """Connect and subscribe to the shared response topics."""
        try:
            await self.connector.connect()
        except ConnectionFailedError as e:
            logger.error(str(e))
            self._dispatch(ActionType.SET_ERROR, CONNECT_FAILED)
            return False
        self._dispatch(ActionType.SET_CONNECTED, True)
        try:
            await self.router.subscribe_base_topics()
        except TransportError as e:
            logger.error(f"Subscribing to response topics failed: {str(e)}")
            self._dispatch(ActionType.SET_ERROR, CONNECT_FAILED)
            return False
        return True

    async def close(self) -> None:
        self.timers.cancel_all()
        await self.connector.disconnect()
        self._dispatch(ActionType.SET_CONNECTED, False)

    async def _on_connection_lost(self) -> None:
        self._dispatch(ActionType.SET_CONNECTED, False)

    async def _on_reconnected(self) -> None:
        self._dispatch(ActionType.SET_CONNECTED, True)
        try:
            await self.router.resubscribe()
        except TransportError as e:
            logger.error(f"Resubscribe after reconnect failed: {str(e)}")

    # Commands

    async def create_room(self, player_name: str) -> bool:
        return await self.dispatcher.create_room(player_name)

    async def join_room(self, room_id: Any, player_name: str) -> bool:
        return await self.dispatcher.join_room(room_id, player_name)

    async def join_scanned_room(self, data: str, player_name: Optional[str] = None) -> bool:
        """Join the room encoded in a scanned QR code."""
        try:
            room_id = int(str(data).strip())
        except ValueError:
            room_id = 0
        if room_id <= 0:
            self._dispatch(ActionType.SET_ERROR, INVALID_QR)
            return False
        name = player_name if player_name is not None else self.state.player_name
        return await self.dispatcher.join_room(str(room_id), name)

    async def start_game(self) -> bool:
        return await self.dispatcher.start_game()

    async def make_guess(self, guess: Any) -> bool:
        return await self.dispatcher.make_guess(guess)

    async def quit_game(self) -> bool:
        return await self.dispatcher.quit_game()

    async def restart_game(self) -> bool:
        return await self.dispatcher.restart_game()

    async def remove_player(self, player_name: str) -> bool:
        return await self.dispatcher.remove_player(player_name)

    # Navigation

    def set_player_name(self, name: str) -> None:
        self._dispatch(ActionType.SET_PLAYER_NAME, name)

    def go_to_camera(self) -> None:
        self._dispatch(ActionType.SET_GAME_STATE, GameState.CAMERA)

    def back_to_menu(self) -> None:
        self._dispatch(ActionType.SET_GAME_STATE, GameState.MENU)

    def back_to_lobby(self) -> None:
        self._dispatch(ActionType.SET_GAME_STATE, GameState.LOBBY)

    def back_from_camera_to_join(self) -> None:
        self._dispatch(ActionType.SET_SHOULD_SHOW_JOIN_MODE, True)
        self._dispatch(ActionType.SET_GAME_STATE, GameState.MENU)

    def clear_join_mode_flag(self) -> None:
        self._dispatch(ActionType.SET_SHOULD_SHOW_JOIN_MODE, False)

    def clear_error(self) -> None:
        self._dispatch(ActionType.CLEAR_ERROR)
