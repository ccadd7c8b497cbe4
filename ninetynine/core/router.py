"""Maps inbound protocol messages to state transitions and side effects."""

import logging
from typing import Any, Optional

from ninetynine.core.exceptions import ServerError, TransportError
from ninetynine.core.state import GameState, StateMachine
from ninetynine.core.timers import AUTO_GUESS, FINISHED_RESTART, JOIN_TIMEOUT, TimerManager
from ninetynine.core.transport import TransportConnector
from ninetynine.models.action import Action, ActionType
from ninetynine.models.messages import (
    GameStarted,
    GuessMade,
    InboundMessage,
    MessageType,
    PlayerKicked,
    RoomSnapshotMessage,
    ServerErrorMessage,
    Unrecognized,
)
from ninetynine.models.room import GameRoom

logger = logging.getLogger(__name__)

GAME_RESPONSE_TOPIC = "gameResponse"
LEGACY_UPDATE_QUEUE = "/user/queue/gameUpdate"
# Replies to our own create or join; these may switch the held room.
JOIN_REPLIES = (MessageType.ROOM_CREATED, MessageType.ROOM_JOINED)


def room_topic(room_id: Any) -> str:
    return f"room.{room_id}"


def user_topic(player_id: Any) -> str:
    return f"user.{player_id}"


class MessageRouter:
    """
    Turns each inbound message into reducer actions plus side effects
    (subscriptions, timers, follow-up commands).

    The router and the transport are the only places topic names appear.
    `dispatcher` is attached after construction because the two refer to
    each other: the router sends auto-guesses, the dispatcher asks the
    router for subscriptions.
    """

    def __init__(self, connector: TransportConnector, machine: StateMachine, timers: TimerManager):
        self.connector = connector
        self.machine = machine
        self.timers = timers
        self.dispatcher = None
        # Room and player topics we subscribed, and the one join still awaiting a snapshot.
        self._topics = set()
        self._pending_join: Optional[str] = None
        self._handlers = {
            MessageType.ROOM_CREATED: self._on_room_created,
            MessageType.PLAYER_JOINED: self._on_player_joined,
            MessageType.ROOM_JOINED: self._on_room_joined,
            MessageType.GAME_STARTING_COUNTDOWN: self._on_countdown,
            MessageType.GAME_STARTED: self._on_game_started,
            MessageType.GUESS_MADE: self._on_guess_made,
            MessageType.PLAYER_QUIT: self._on_room_update,
            MessageType.PLAYER_REMOVED: self._on_room_update,
            MessageType.GAME_RESTARTED: self._on_game_restarted,
            MessageType.PLAYER_KICKED: self._on_player_kicked,
            MessageType.ERROR: self._on_error,
        }

    async def handle(self, message: InboundMessage) -> None:
        """Route one decoded message. Unrecognized types are logged and ignored."""
        if isinstance(message, Unrecognized):
            logger.warning(f"Unknown message type: {message.type!r}")
            return
        if isinstance(message, RoomSnapshotMessage) and message.type not in JOIN_REPLIES:
            held = self.machine.state.game_room
            if held is not None and str(held.room_id) != str(message.game_room.room_id):
                logger.warning(f"Ignoring {message.type.value} for room {message.game_room.room_id}, "
                               f"holding room {held.room_id}")
                return
        logger.info(f"Game update: {message.type.value}")
        await self._handlers[message.type](message)

    def _dispatch(self, kind: ActionType, payload: Any = None) -> None:
        self.machine.dispatch(Action(kind, payload))

    # Subscriptions

    async def subscribe_base_topics(self) -> None:
        await self.connector.subscribe(LEGACY_UPDATE_QUEUE, self.handle)
        await self.connector.subscribe(GAME_RESPONSE_TOPIC, self.handle)

    async def _subscribe_owned(self, topic: str) -> None:
        self._topics.add(topic)
        try:
            await self.connector.subscribe(topic, self.handle)
        except TransportError:
            self._topics.discard(topic)
            raise

    async def subscribe_room(self, room_id: Any) -> None:
        await self._subscribe_owned(room_topic(room_id))

    async def subscribe_user(self, player_id: Any) -> None:
        await self._subscribe_owned(user_topic(player_id))

    async def subscribe_pending_room(self, room_id: Any) -> None:
        """Subscribe to a room we asked to join but have no snapshot of yet."""
        topic = room_topic(room_id)
        if self._pending_join != topic:
            await self.release_pending_room()
        await self._subscribe_owned(topic)
        self._pending_join = topic

    async def release_pending_room(self) -> None:
        """Drop an unconfirmed join topic. The room we hold is never released here."""
        topic, self._pending_join = self._pending_join, None
        if topic is None:
            return
        room = self.machine.state.game_room
        if room is not None and room_topic(room.room_id) == topic:
            return
        self._topics.discard(topic)
        await self.connector.unsubscribe(topic)
        logger.info(f"Released unconfirmed room topic {topic}")

    async def _confirm_room(self, room: GameRoom) -> None:
        if self._pending_join == room_topic(room.room_id):
            self._pending_join = None
        else:
            await self.release_pending_room()

    async def resubscribe(self) -> None:
        """Restore subscriptions after the transport reconnected."""
        pending, self._pending_join = self._pending_join, None
        self._topics.clear()
        await self.subscribe_base_topics()
        state = self.machine.state
        if state.game_room is not None:
            await self.subscribe_room(state.game_room.room_id)
            me = state.game_room.find_player(state.player_name)
            if me is not None:
                await self.subscribe_user(me.id)
        if pending is not None and pending not in self._topics:
            await self._subscribe_owned(pending)
            self._pending_join = pending

    async def leave_room_topics(self) -> None:
        """Drop every room and player topic, pending and temporary ones included."""
        topics, self._topics = self._topics, set()
        self._pending_join = None
        for topic in sorted(topics):
            await self.connector.unsubscribe(topic)

    # Handlers

    async def _on_room_created(self, message: RoomSnapshotMessage) -> None:
        room = message.game_room
        self.timers.cancel(JOIN_TIMEOUT)
        self._dispatch(ActionType.SET_GAME_ROOM, room)
        self._dispatch(ActionType.SET_GAME_STATE, GameState.LOBBY)
        await self._confirm_room(room)
        await self.subscribe_room(room.room_id)
        await self.subscribe_user(room.host_id)

    async def _on_player_joined(self, message: RoomSnapshotMessage) -> None:
        prior = self.machine.state
        room = message.game_room
        self._dispatch(ActionType.SET_GAME_ROOM, room)
        if prior.game_state in (GameState.MENU, GameState.CAMERA) or prior.game_room is None:
            self.timers.cancel(JOIN_TIMEOUT)
            self._dispatch(ActionType.SET_GAME_STATE, GameState.LOBBY)
            await self._confirm_room(room)
            joined = room.find_player(prior.player_name)
            if joined is not None:
                await self.subscribe_user(joined.id)

    async def _on_room_joined(self, message: RoomSnapshotMessage) -> None:
        room = message.game_room
        self.timers.cancel(JOIN_TIMEOUT)
        self._dispatch(ActionType.SET_GAME_ROOM, room)
        self._dispatch(ActionType.SET_GAME_STATE, GameState.LOBBY)
        await self._confirm_room(room)
        me = room.find_player(self.machine.state.player_name)
        if me is not None:
            await self.subscribe_user(me.id)

    async def _on_countdown(self, message: RoomSnapshotMessage) -> None:
        self._dispatch(ActionType.SET_GAME_ROOM, message.game_room)
        self.timers.start_countdown()

    async def _on_game_started(self, message: GameStarted) -> None:
        logger.debug(f"Secret number for room {message.game_room.room_id}: {message.secret_number}")
        self.timers.cancel_all()
        self._dispatch(ActionType.END_COUNTDOWN)
        self._dispatch(ActionType.CLEAR_GAME_HISTORY)
        self._dispatch(ActionType.SET_GAME_ROOM, message.game_room)
        self._dispatch(ActionType.SET_GAME_STATE, GameState.PLAYING)

    async def _on_guess_made(self, message: GuessMade) -> None:
        room = message.game_room
        self._dispatch(ActionType.SET_GAME_ROOM, room)
        self._dispatch(ActionType.ADD_GAME_TURN, message.last_turn)

        if room.is_finished:
            self.timers.cancel(AUTO_GUESS)
            self._dispatch(ActionType.SET_GAME_STATE, GameState.FINISHED)
            if self.dispatcher is not None:
                self.timers.schedule_finished_restart(room.room_id, self.dispatcher.restart_game)
        elif room.is_single_value and self.dispatcher is not None:
            self.timers.schedule_auto_guess(room.room_id, room.min_range, self.dispatcher.send_guess)
        elif room.current_player is not None:
            logger.debug(f"Next turn: {room.current_player.name}")

    async def _on_room_update(self, message: RoomSnapshotMessage) -> None:
        self._dispatch(ActionType.SET_GAME_ROOM, message.game_room)

    async def _on_game_restarted(self, message: RoomSnapshotMessage) -> None:
        self.timers.cancel(AUTO_GUESS)
        self.timers.cancel(FINISHED_RESTART)
        self._dispatch(ActionType.CLEAR_GAME_HISTORY)
        self._dispatch(ActionType.SET_GAME_ROOM, message.game_room)
        self._dispatch(ActionType.SET_GAME_STATE, GameState.LOBBY)

    async def _on_player_kicked(self, message: PlayerKicked) -> None:
        logger.info("You have been removed from the game by the host")
        self.timers.cancel_all()
        await self.leave_room_topics()
        self._dispatch(ActionType.RESET_GAME)
        self._dispatch(ActionType.SET_ERROR, message.message)

    async def _on_error(self, message: ServerErrorMessage) -> None:
        error = ServerError(message.message)
        logger.info(f"Received ERROR message: {error}")
        self._dispatch(ActionType.SET_ERROR, str(error))
