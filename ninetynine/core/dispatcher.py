"""Builds, validates and sends outbound commands."""

import logging
import time
import uuid
from typing import Any, Optional

from ninetynine.config import Config
from ninetynine.core.exceptions import TransportError
from ninetynine.core.router import MessageRouter
from ninetynine.core.state import StateMachine
from ninetynine.core.timers import TimerManager
from ninetynine.core.transport import TransportConnector
from ninetynine.models.action import Action, ActionType
from ninetynine.models.commands import (
    Command,
    CreateRoom,
    JoinRoom,
    MakeGuess,
    QuitGame,
    RemovePlayer,
    RestartGame,
    StartGameCountdown,
)
from ninetynine.models.room import GameRoom

logger = logging.getLogger(__name__)

NOT_CONNECTED = "Not connected to server. Please wait and try again."
NO_ROOM = "You are not in a game room"
NAME_REQUIRED = "Please enter a name to proceed"
ROOM_ID_REQUIRED = "Please enter Room ID to proceed"


def temp_player_id() -> str:
    """Client-side id used to receive ROOM_CREATED before the server assigns one."""
    return f"temp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class CommandDispatcher:
    """
    Outbound side of the client.

    Every command checks its preconditions before touching the transport
    and reports failures through the error field instead of raising.
    Each public command returns True if a message was sent.
    """

    def __init__(self, connector: TransportConnector, machine: StateMachine, timers: TimerManager,
                 router: MessageRouter, config=Config):
        self.connector = connector
        self.machine = machine
        self.timers = timers
        self.router = router
        self.config = config

    def _error(self, message: str) -> bool:
        self.machine.dispatch(Action(ActionType.SET_ERROR, message))
        return False

    def _require_connection(self) -> bool:
        if not self.machine.state.connected:
            return self._error(NOT_CONNECTED)
        return True

    def _require_room(self) -> Optional[GameRoom]:
        if not self._require_connection():
            return None
        room = self.machine.state.game_room
        if room is None:
            self._error(NO_ROOM)
        return room

    def _player_name(self, player_name: str) -> Optional[str]:
        name = (player_name or "").strip()[:self.config.PLAYER_NAME_MAX_LENGTH]
        self.machine.dispatch(Action(ActionType.SET_PLAYER_NAME, name))
        if not name:
            self._error(NAME_REQUIRED)
            return None
        return name

    async def _send(self, command: Command, failure: str) -> bool:
        try:
            await self.connector.send(command.destination, command.to_dict())
        except TransportError as e:
            logger.error(f"Failed to send {command.name}: {str(e)}")
            return self._error(f"Failed to {failure}: {str(e)}")
        logger.info(f"Sent {command.name}")
        return True

    async def create_room(self, player_name: str) -> bool:
        name = self._player_name(player_name)
        if name is None or not self._require_connection():
            return False
        temp_id = temp_player_id()
        try:
            # The server answers on this topic before real ids exist.
            await self.router.subscribe_user(temp_id)
        except TransportError as e:
            return self._error(f"Failed to create room: {str(e)}")
        return await self._send(CreateRoom(name, temp_id), "create room")

    async def join_room(self, room_id: Any, player_name: str) -> bool:
        name = self._player_name(player_name)
        if name is None or not self._require_connection():
            return False
        room_id = str(room_id if room_id is not None else "").strip()
        if not room_id:
            return self._error(ROOM_ID_REQUIRED)
        try:
            # Subscribe first so a fast PLAYER_JOINED is not missed.
            await self.router.subscribe_pending_room(room_id)
        except TransportError as e:
            return self._error(f"Failed to join room: {str(e)}")
        if not await self._send(JoinRoom(room_id, name), "join room"):
            await self.router.release_pending_room()
            return False
        self.timers.schedule_join_timeout(self.router.release_pending_room)
        return True

    async def start_game(self) -> bool:
        room = self._require_room()
        if room is None:
            return False
        return await self._send(StartGameCountdown(room.room_id), "start game")

    async def make_guess(self, guess: Any) -> bool:
        room = self._require_room()
        if room is None:
            return False
        try:
            value = int(guess)
        except (TypeError, ValueError):
            return self._error(f"Invalid guess: {guess!r}")
        if not room.min_range <= value <= room.max_range:
            return self._error(f"Guess must be between {room.min_range} and {room.max_range}")
        return await self._send(MakeGuess(room.room_id, value), "make guess")

    async def send_guess(self, room_id: Any, value: int) -> bool:
        """Guess for a specific room; used by the auto-guess timer."""
        if not self._require_connection():
            return False
        return await self._send(MakeGuess(room_id, int(value)), "make guess")

    async def quit_game(self) -> bool:
        """Leave the room. Local state is reset whether or not the server hears it."""
        state = self.machine.state
        sent = False
        if state.game_room is not None:
            if state.connected:
                sent = await self._send(QuitGame(state.game_room.room_id, state.player_name), "quit game")
            else:
                logger.warning("Quitting locally; not connected to server")
        await self.router.leave_room_topics()
        self.timers.cancel_all()
        self.machine.dispatch(Action(ActionType.RESET_GAME))
        return sent

    async def restart_game(self) -> bool:
        room = self._require_room()
        if room is None:
            return False
        return await self._send(RestartGame(room.room_id), "restart game")

    async def remove_player(self, player_name: str) -> bool:
        room = self._require_room()
        if room is None:
            return False
        return await self._send(RemovePlayer(room.room_id, player_name), "remove player")
