"""Room snapshot models mirrored from the server."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


FINISHED = "FINISHED"


@dataclass(frozen=True)
class Player:
    """A participant in a room. Names are unique within a room."""

    id: str
    name: str
    is_host: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'isHost': self.is_host}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Player':
        return cls(
            id=data['id'],
            name=data['name'],
            is_host=bool(data.get('isHost', False))
        )


@dataclass(frozen=True)
class GameTurn:
    """One guess and its result."""

    player_name: str
    guess: int
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {'playerName': self.player_name, 'guess': self.guess, 'result': self.result}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GameTurn':
        return cls(
            player_name=data['playerName'],
            guess=int(data['guess']),
            result=data.get('result')
        )


@dataclass(frozen=True)
class GameRoom:
    """
    Full server-confirmed snapshot of a room.

    Players are kept in join order; `current_player_index` indexes into it.
    Snapshots are never merged, each inbound one replaces the last.
    """

    room_id: Any
    host_id: Any
    players: tuple = field(default_factory=tuple)
    current_player_index: int = 0
    min_range: int = 1
    max_range: int = 99
    state: Optional[str] = None
    secret_number: Optional[int] = None

    @property
    def current_player(self) -> Optional[Player]:
        if 0 <= self.current_player_index < len(self.players):
            return self.players[self.current_player_index]
        return None

    @property
    def is_single_value(self) -> bool:
        return self.min_range == self.max_range

    @property
    def is_finished(self) -> bool:
        return self.state == FINISHED

    def find_player(self, name: str) -> Optional[Player]:
        for player in self.players:
            if player.name == name:
                return player
        return None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'roomId': self.room_id,
            'hostId': self.host_id,
            'players': [player.to_dict() for player in self.players],
            'currentPlayerIndex': self.current_player_index,
            'minRange': self.min_range,
            'maxRange': self.max_range,
            'state': self.state
        }
        if self.secret_number is not None:
            result['secretNumber'] = self.secret_number
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GameRoom':
        players: List[Player] = [Player.from_dict(p) for p in data.get('players') or []]
        secret = data.get('secretNumber')
        return cls(
            room_id=data['roomId'],
            host_id=data.get('hostId'),
            players=tuple(players),
            current_player_index=int(data.get('currentPlayerIndex', 0)),
            min_range=int(data.get('minRange', 1)),
            max_range=int(data.get('maxRange', 99)),
            state=data.get('state'),
            secret_number=int(secret) if secret is not None else None
        )
