"""Tests for inbound message routing."""

import asyncio

import pytest

from ninetynine.core.exceptions import TransportError
from ninetynine.core.state import GameState
from ninetynine.core.timers import AUTO_GUESS, COUNTDOWN, JOIN_TIMEOUT
from ninetynine.models.action import Action, ActionType
from ninetynine.models.messages import Unrecognized, parse_message
from ninetynine.models.room import GameTurn
from conftest import TWO_PLAYERS, room_payload, settle


def message(kind, **fields):
    data = {"type": kind}
    data.update(fields)
    return parse_message(data)


def guess_made(min_range, max_range, state="PLAYING", guess=50, player="Alice"):
    return message("GUESS_MADE",
                   gameRoom=room_payload(players=TWO_PLAYERS, min_range=min_range, max_range=max_range, state=state),
                   lastTurn={"playerName": player, "guess": guess, "result": "SAFE"})


async def enter_game(session, name="Bob"):
    session.set_player_name(name)
    await session.router.subscribe_room(42)
    await session.router.handle(message("ROOM_JOINED", gameRoom=room_payload(players=TWO_PLAYERS)))
    await session.router.handle(message("GAME_STARTED", gameRoom=room_payload(players=TWO_PLAYERS, state="PLAYING")))


@pytest.mark.asyncio
async def test_room_created_enters_lobby_and_subscribes(session, fake_connector):
    await session.router.handle(message("ROOM_CREATED", gameRoom=room_payload(room_id=42, host_id="h1")))

    assert session.state.game_state == GameState.LOBBY
    assert session.state.game_room.room_id == 42
    assert "room.42" in fake_connector.registry
    assert "user.h1" in fake_connector.registry


@pytest.mark.asyncio
async def test_room_joined_subscribes_own_topic(session, fake_connector):
    session.set_player_name("Bob")

    await session.router.handle(message("ROOM_JOINED", gameRoom=room_payload(players=TWO_PLAYERS)))

    assert session.state.game_state == GameState.LOBBY
    assert "user.p2" in fake_connector.registry
    assert "user.h1" not in fake_connector.registry


@pytest.mark.asyncio
async def test_player_joined_moves_menu_client_to_lobby(session, fake_connector):
    session.set_player_name("Bob")

    await session.router.handle(message("PLAYER_JOINED", gameRoom=room_payload(players=TWO_PLAYERS)))

    assert session.state.game_state == GameState.LOBBY
    assert "user.p2" in fake_connector.registry


@pytest.mark.asyncio
async def test_player_joined_from_camera(session):
    session.set_player_name("Bob")
    session.go_to_camera()

    await session.router.handle(message("PLAYER_JOINED", gameRoom=room_payload(players=TWO_PLAYERS)))

    assert session.state.game_state == GameState.LOBBY


@pytest.mark.asyncio
async def test_player_joined_in_game_only_updates_room(session, fake_connector):
    await enter_game(session, name="Alice")
    third = TWO_PLAYERS + (("p3", "Carol", False),)

    await session.router.handle(message("PLAYER_JOINED", gameRoom=room_payload(players=third, state="PLAYING")))

    assert session.state.game_state == GameState.PLAYING
    assert len(session.state.game_room.players) == 3
    assert "user.p3" not in fake_connector.registry


@pytest.mark.asyncio
async def test_countdown_then_game_started(session):
    await session.router.handle(message("ROOM_CREATED", gameRoom=room_payload()))
    await session.router.handle(message("GAME_STARTING_COUNTDOWN", gameRoom=room_payload(state="COUNTDOWN")))

    assert session.state.is_counting_down is True
    assert session.state.countdown == 5
    assert session.timers.is_active(COUNTDOWN)

    session.machine.dispatch(Action(ActionType.ADD_GAME_TURN, GameTurn("Old", 1, "SAFE")))
    await session.router.handle(message("GAME_STARTED", gameRoom=room_payload(state="PLAYING", secretNumber=33)))

    state = session.state
    assert state.game_state == GameState.PLAYING
    assert state.is_counting_down is False
    assert state.countdown == 0
    assert state.game_history == ()
    assert state.game_room.secret_number == 33
    assert not session.timers.is_active(COUNTDOWN)


@pytest.mark.asyncio
async def test_guess_made_appends_turn(session):
    await enter_game(session)

    await session.router.handle(guess_made(51, 99, guess=50))

    assert session.state.current_turn == GameTurn("Alice", 50, "SAFE")
    assert len(session.state.game_history) == 1
    assert session.state.game_room.min_range == 51
    assert session.state.game_state == GameState.PLAYING
    assert not session.timers.is_active(AUTO_GUESS)


@pytest.mark.asyncio
async def test_guess_made_finishing_game(session):
    await enter_game(session)

    await session.router.handle(guess_made(60, 60, state="FINISHED", guess=60))

    assert session.state.game_state == GameState.FINISHED
    assert not session.timers.is_active(AUTO_GUESS)


@pytest.mark.asyncio
async def test_single_value_schedules_one_auto_guess(session, fake_connector):
    """Test one auto-guess fires for the last remaining value."""
    await enter_game(session)

    await session.router.handle(guess_made(60, 60, guess=59))
    assert session.timers.is_active(AUTO_GUESS)
    await asyncio.sleep(session.config.AUTO_GUESS_DELAY_SEC * 3)

    assert fake_connector.sent_to("/app/makeGuess") == [{"roomId": 42, "guess": 60}]


@pytest.mark.asyncio
async def test_auto_guess_cancelled_by_finishing_update(session, fake_connector):
    await enter_game(session)

    await session.router.handle(guess_made(60, 60, guess=59))
    await session.router.handle(guess_made(60, 60, state="FINISHED", guess=60, player="Bob"))
    await asyncio.sleep(session.config.AUTO_GUESS_DELAY_SEC * 3)

    assert fake_connector.sent_to("/app/makeGuess") == []
    assert session.state.game_state == GameState.FINISHED


@pytest.mark.asyncio
async def test_room_updates_replace_snapshot(session):
    await enter_game(session, name="Alice")

    for kind in ("PLAYER_QUIT", "PLAYER_REMOVED"):
        await session.router.handle(message(kind, gameRoom=room_payload(players=TWO_PLAYERS[:1], state="PLAYING")))
        assert [p.name for p in session.state.game_room.players] == ["Alice"]
        assert session.state.game_state == GameState.PLAYING


@pytest.mark.asyncio
async def test_game_restarted_returns_to_lobby(session):
    await enter_game(session)
    await session.router.handle(guess_made(60, 60, state="FINISHED", guess=60))

    await session.router.handle(message("GAME_RESTARTED", gameRoom=room_payload(players=TWO_PLAYERS)))

    assert session.state.game_state == GameState.LOBBY
    assert session.state.game_history == ()
    assert session.state.current_turn is None


@pytest.mark.asyncio
async def test_player_kicked_resets_and_unsubscribes(session, fake_connector):
    await enter_game(session)
    assert {"room.42", "user.p2"} <= set(fake_connector.registry)

    await session.router.handle(message("PLAYER_KICKED", message="You were removed by the host"))

    state = session.state
    assert "room.42" in fake_connector.unsubscribed
    assert "user.p2" in fake_connector.unsubscribed
    assert state.game_state == GameState.MENU
    assert state.game_room is None
    assert state.game_history == ()
    assert state.connected is True
    assert state.player_name == "Bob"
    assert state.error == "You were removed by the host"


@pytest.mark.asyncio
async def test_server_error_is_surfaced_and_clearable(session):
    await session.router.handle(message("ERROR", message="Game already started"))

    assert session.state.error == "Game already started"
    session.clear_error()
    assert session.state.error is None


@pytest.mark.asyncio
async def test_unrecognized_message_is_ignored(session):
    before = session.state

    await session.router.handle(Unrecognized(type="CONFETTI", raw={"type": "CONFETTI"}))

    assert session.state == before


@pytest.mark.asyncio
async def test_room_snapshot_cancels_join_timeout(session):
    session.set_player_name("Bob")
    assert await session.join_room("42", "Bob")
    assert session.timers.is_active(JOIN_TIMEOUT)

    await session.router.handle(message("ROOM_JOINED", gameRoom=room_payload(players=TWO_PLAYERS)))
    await settle()

    assert not session.timers.is_active(JOIN_TIMEOUT)


@pytest.mark.asyncio
async def test_resubscribe_restores_room_topics(session, fake_connector):
    await enter_game(session)
    fake_connector.registry.clear()

    await session.router.resubscribe()

    assert {"gameResponse", "/user/queue/gameUpdate", "room.42", "user.p2"} == set(fake_connector.registry)


@pytest.mark.asyncio
async def test_join_timeout_releases_room_topic(session, fake_connector):
    assert await session.join_room("7", "Bob")
    assert "room.7" in fake_connector.registry

    await asyncio.sleep(session.config.JOIN_TIMEOUT_SEC * 3)

    assert session.state.error == "Room not found - Please enter an existing Room ID"
    assert "room.7" not in fake_connector.registry
    assert fake_connector.unsubscribed == ["room.7"]


@pytest.mark.asyncio
async def test_failed_join_send_releases_room_topic(session, fake_connector):
    async def failing_send(destination, payload):
        raise TransportError("socket closed")

    fake_connector.send = failing_send

    assert await session.join_room("7", "Bob") is False

    assert session.state.error == "Failed to join room: socket closed"
    assert fake_connector.registry == {}
    assert not session.timers.is_active(JOIN_TIMEOUT)


@pytest.mark.asyncio
async def test_other_room_reply_releases_pending_join(session, fake_connector):
    """Test joining a different room drops the topic of the unanswered join."""
    await session.join_room("7", "Bob")
    await session.join_room("42", "Bob")
    assert "room.7" in fake_connector.unsubscribed

    await session.router.handle(message("ROOM_JOINED", gameRoom=room_payload(players=TWO_PLAYERS)))

    assert set(fake_connector.registry) == {"room.42", "user.p2"}
    assert session.state.game_room.room_id == 42


@pytest.mark.asyncio
async def test_room_created_releases_pending_join(session, fake_connector):
    await session.join_room("7", "Alice")

    await session.router.handle(message("ROOM_CREATED", gameRoom=room_payload()))

    assert "room.7" in fake_connector.unsubscribed
    assert set(fake_connector.registry) == {"room.42", "user.h1"}


@pytest.mark.asyncio
async def test_snapshot_for_another_room_is_ignored(session):
    await enter_game(session)

    await session.router.handle(message("PLAYER_JOINED", gameRoom=room_payload(room_id=7, players=TWO_PLAYERS)))
    await session.router.handle(message("PLAYER_QUIT", gameRoom=room_payload(room_id=7)))

    assert session.state.game_room.room_id == 42
    assert session.state.game_state == GameState.PLAYING


@pytest.mark.asyncio
async def test_quit_releases_pending_join(session, fake_connector):
    await session.join_room("7", "Bob")

    await session.quit_game()

    assert fake_connector.registry == {}
    assert "room.7" in fake_connector.unsubscribed
    assert not session.timers.is_active(JOIN_TIMEOUT)
