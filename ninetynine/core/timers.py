"""Locally-running timers kept in step with the client state."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ninetynine.config import Config
from ninetynine.core.exceptions import JoinTimeoutError
from ninetynine.core.state import GameState, StateMachine
from ninetynine.models.action import Action, ActionType

logger = logging.getLogger(__name__)

COUNTDOWN = "countdown"
AUTO_GUESS = "auto_guess"
JOIN_TIMEOUT = "join_timeout"
FINISHED_RESTART = "finished_restart"


class TimerHandle:
    """Cancellable handle around a scheduled task."""

    def __init__(self, name: str, task: asyncio.Task):
        self.name = name
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    def __repr__(self) -> str:
        return f"TimerHandle(name={self.name!r}, active={self.active!r})"


class TimerManager:
    """
    Owns the pre-game countdown, the auto-guess delay, the join-timeout
    fallback and the finished-screen restart.

    At most one timer of each kind runs at a time; scheduling a kind
    replaces the previous one. Every timer re-checks the live state when
    it fires and does nothing if its condition no longer holds.
    """

    def __init__(self, machine: StateMachine, config=Config):
        self.machine = machine
        self.config = config
        self.timers: Dict[str, TimerHandle] = {}

    def _schedule(self, name: str, coro) -> TimerHandle:
        self.cancel(name)
        handle = TimerHandle(name, asyncio.create_task(coro))
        self.timers[name] = handle
        return handle

    def cancel(self, name: str) -> None:
        handle = self.timers.pop(name, None)
        if handle is not None and handle.active:
            handle.cancel()
            logger.debug(f"Cancelled {name} timer")

    def cancel_all(self) -> None:
        for name in list(self.timers):
            self.cancel(name)

    def is_active(self, name: str) -> bool:
        handle = self.timers.get(name)
        return handle is not None and handle.active

    def start_countdown(self) -> TimerHandle:
        """Display-only pre-game countdown; GAME_STARTED ends it, not zero."""
        self.machine.dispatch(Action(ActionType.START_COUNTDOWN, self.config.COUNTDOWN_START))
        return self._schedule(COUNTDOWN, self._run_countdown(self.config.COUNTDOWN_START))

    async def _run_countdown(self, count: int) -> None:
        while True:
            await asyncio.sleep(self.config.COUNTDOWN_INTERVAL_SEC)
            if not self.machine.state.is_counting_down:
                # Ended early by the server.
                return
            count -= 1
            if count > 0:
                self.machine.dispatch(Action(ActionType.UPDATE_COUNTDOWN, count))
            else:
                self.machine.dispatch(Action(ActionType.END_COUNTDOWN))
                return

    def schedule_auto_guess(self, room_id: Any, value: int,
                            fire: Callable[[Any, int], Awaitable[None]]) -> TimerHandle:
        """Send the only remaining value after the configured delay."""
        logger.info(f"Auto-guess {value} scheduled for room {room_id}")
        return self._schedule(AUTO_GUESS, self._run_auto_guess(room_id, value, fire))

    async def _run_auto_guess(self, room_id: Any, value: int, fire) -> None:
        await asyncio.sleep(self.config.AUTO_GUESS_DELAY_SEC)
        state = self.machine.state
        room = state.game_room
        if (state.game_state != GameState.PLAYING or room is None or room.room_id != room_id
                or room.is_finished or not (room.min_range == room.max_range == value)):
            logger.info(f"Auto-guess {value} for room {room_id} skipped, game moved on")
            return
        await fire(room_id, value)

    def schedule_join_timeout(self, expire: Optional[Callable[[], Awaitable[None]]] = None) -> TimerHandle:
        """
        Surface a "room not found" error if no room arrives in time.

        `expire` runs once the delay is up whether or not a room arrived;
        it releases the unconfirmed join subscription.
        """
        return self._schedule(JOIN_TIMEOUT, self._run_join_timeout(expire))

    async def _run_join_timeout(self, expire) -> None:
        await asyncio.sleep(self.config.JOIN_TIMEOUT_SEC)
        state = self.machine.state
        if state.game_state == GameState.MENU and state.game_room is None:
            error = JoinTimeoutError()
            logger.warning(f"Join request unanswered: {error}")
            self.machine.dispatch(Action(ActionType.SET_ERROR, str(error)))
        if expire is not None:
            await expire()

    def schedule_finished_restart(self, room_id: Any,
                                  fire: Callable[[], Awaitable[None]]) -> Optional[TimerHandle]:
        """Return the room to the lobby after the finished screen has been shown."""
        if not self.config.FINISHED_RESTART_SEC:
            return None
        return self._schedule(FINISHED_RESTART, self._run_finished_restart(room_id, fire))

    async def _run_finished_restart(self, room_id: Any, fire) -> None:
        await asyncio.sleep(self.config.FINISHED_RESTART_SEC)
        state = self.machine.state
        if state.game_state != GameState.FINISHED or state.game_room is None or state.game_room.room_id != room_id:
            return
        await fire()
