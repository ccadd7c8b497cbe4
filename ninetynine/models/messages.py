"""Inbound protocol messages, decoded into a closed set of variants."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from ninetynine.core.exceptions import DecodeError
from ninetynine.models.room import GameRoom, GameTurn


class MessageType(Enum):
    """Discriminator values carried in the `type` field."""
    ROOM_CREATED = "ROOM_CREATED"
    PLAYER_JOINED = "PLAYER_JOINED"
    ROOM_JOINED = "ROOM_JOINED"
    GAME_STARTING_COUNTDOWN = "GAME_STARTING_COUNTDOWN"
    GAME_STARTED = "GAME_STARTED"
    GUESS_MADE = "GUESS_MADE"
    PLAYER_QUIT = "PLAYER_QUIT"
    GAME_RESTARTED = "GAME_RESTARTED"
    PLAYER_KICKED = "PLAYER_KICKED"
    PLAYER_REMOVED = "PLAYER_REMOVED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class RoomSnapshotMessage:
    """A message whose payload is a full room snapshot."""

    type: MessageType
    game_room: GameRoom


@dataclass(frozen=True)
class GameStarted(RoomSnapshotMessage):
    @property
    def secret_number(self) -> Optional[int]:
        return self.game_room.secret_number


@dataclass(frozen=True)
class GuessMade(RoomSnapshotMessage):
    last_turn: GameTurn = None


@dataclass(frozen=True)
class PlayerKicked:
    type: MessageType
    message: str
    game_room: Optional[GameRoom] = None


@dataclass(frozen=True)
class ServerErrorMessage:
    type: MessageType
    message: str


@dataclass(frozen=True)
class Unrecognized:
    """Any message whose `type` is not a known MessageType."""

    type: Any
    raw: Dict[str, Any]


InboundMessage = Union[RoomSnapshotMessage, GameStarted, GuessMade, PlayerKicked,
                       ServerErrorMessage, Unrecognized]


def _room(data: Dict[str, Any]) -> GameRoom:
    room = data.get('gameRoom')
    if not isinstance(room, dict):
        raise DecodeError(f"{data.get('type')} message without a gameRoom snapshot")
    return GameRoom.from_dict(room)


def parse_message(data: Dict[str, Any]) -> InboundMessage:
    """
    Turn a decoded JSON object into a message variant.

    Raises:
        DecodeError: If a known message type is missing required fields
    """
    raw_type = data.get('type')
    try:
        message_type = MessageType(raw_type)
    except ValueError:
        return Unrecognized(type=raw_type, raw=data)

    try:
        if message_type == MessageType.GAME_STARTED:
            return GameStarted(message_type, _room(data))
        if message_type == MessageType.GUESS_MADE:
            turn = data.get('lastTurn')
            if not isinstance(turn, dict):
                raise DecodeError("GUESS_MADE message without lastTurn")
            return GuessMade(message_type, _room(data), GameTurn.from_dict(turn))
        if message_type == MessageType.PLAYER_KICKED:
            room = GameRoom.from_dict(data['gameRoom']) if isinstance(data.get('gameRoom'), dict) else None
            return PlayerKicked(message_type, data.get('message') or "You have been removed from the game", room)
        if message_type == MessageType.ERROR:
            return ServerErrorMessage(message_type, str(data.get('message', '')))
        return RoomSnapshotMessage(message_type, _room(data))
    except DecodeError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed {raw_type} message: {e!r}") from e


def decode_message(body: Union[str, bytes]) -> InboundMessage:
    """Decode a raw message body into a message variant."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Invalid JSON message: {str(e)}") from e
    if not isinstance(data, dict):
        raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")
    return parse_message(data)
