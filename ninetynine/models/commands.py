"""Outbound command models."""

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class Command:
    """Base class for commands sent to the server."""

    name = "command"

    @property
    def destination(self) -> str:
        return f"/app/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert command to its JSON payload."""
        return {_camel(key): value for key, value in asdict(self).items()}


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


@dataclass(frozen=True)
class CreateRoom(Command):
    player_name: str
    temp_player_id: str

    name = "createRoom"


@dataclass(frozen=True)
class JoinRoom(Command):
    room_id: str
    player_name: str

    name = "joinRoom"


@dataclass(frozen=True)
class StartGameCountdown(Command):
    room_id: Any

    name = "startGameCountdown"


@dataclass(frozen=True)
class MakeGuess(Command):
    room_id: Any
    guess: int

    name = "makeGuess"


@dataclass(frozen=True)
class QuitGame(Command):
    room_id: Any
    player_name: str

    name = "quitGame"


@dataclass(frozen=True)
class RestartGame(Command):
    room_id: Any

    name = "restartGame"


@dataclass(frozen=True)
class RemovePlayer(Command):
    room_id: Any
    player_name: str

    name = "removePlayer"
