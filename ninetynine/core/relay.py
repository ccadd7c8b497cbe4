"""STOMP topic relay used by the development broker."""

import itertools
import logging
import uuid
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional

from fastapi import WebSocket

from ninetynine.core.exceptions import ClientError, DecodeError
from ninetynine.core.stomp import Frame, decode_frames, encode_frame

logger = logging.getLogger(__name__)


class TopicRelay:
    """
    Manages broker-side WebSocket connections and fans SEND frames out
    to every subscriber of the destination. It knows nothing about games.
    """

    def __init__(self, history_size: int = 500):
        self.connections: Dict[str, WebSocket] = {}
        # destination -> client id -> subscription id
        self.subscriptions: Dict[str, Dict[str, str]] = defaultdict(dict)
        self.traffic: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self.relayed = 0
        self._message_ids = itertools.count(1)

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> str:
        """Accept a WebSocket and register it; returns the client id."""
        await websocket.accept(subprotocol=self._pick_subprotocol(websocket))
        client_id = client_id or str(uuid.uuid4())
        self.connections[client_id] = websocket
        logger.info(f"Client {client_id} connected")
        return client_id

    @staticmethod
    def _pick_subprotocol(websocket: WebSocket) -> Optional[str]:
        offered = websocket.scope.get("subprotocols") or []
        for name in ("v12.stomp", "v11.stomp", "v10.stomp"):
            if name in offered:
                return name
        return None

    def disconnect(self, client_id: str) -> None:
        self.connections.pop(client_id, None)
        for destination in list(self.subscriptions):
            self.subscriptions[destination].pop(client_id, None)
            if not self.subscriptions[destination]:
                del self.subscriptions[destination]
        logger.info(f"Client {client_id} disconnected")

    def topic_counts(self) -> Dict[str, int]:
        return {destination: len(subs) for destination, subs in self.subscriptions.items()}

    async def handle_message(self, client_id: str, message: str) -> bool:
        """
        Process one WebSocket message from a client.

        Returns:
            False once the client has asked to disconnect

        Raises:
            ClientError: If the message is not valid STOMP
        """
        try:
            frames = decode_frames(message)
        except DecodeError as e:
            await self._send_error(client_id, "malformed frame", str(e))
            raise ClientError(f"Invalid frame from {client_id}: {str(e)}") from e

        for frame in frames:
            if not await self._handle_frame(client_id, frame):
                return False
        return True

    async def _handle_frame(self, client_id: str, frame: Frame) -> bool:
        command = frame.command
        if command in ("CONNECT", "STOMP"):
            await self._send(client_id, Frame("CONNECTED", {"version": "1.2", "heart-beat": "0,0"}))
        elif command == "SUBSCRIBE":
            destination, sub_id = frame.header("destination"), frame.header("id")
            if not destination or not sub_id:
                await self._send_error(client_id, "SUBSCRIBE requires destination and id")
            else:
                self.subscriptions[destination][client_id] = sub_id
                logger.info(f"Client {client_id} subscribed to {destination}")
        elif command == "UNSUBSCRIBE":
            self._unsubscribe(client_id, frame.header("id"))
        elif command == "SEND":
            await self._publish(client_id, frame)
        elif command == "DISCONNECT":
            receipt = frame.header("receipt")
            if receipt:
                await self._send(client_id, Frame("RECEIPT", {"receipt-id": receipt}))
            return False
        else:
            await self._send_error(client_id, f"Unsupported command {command}")
        if frame.header("receipt") and command != "DISCONNECT":
            await self._send(client_id, Frame("RECEIPT", {"receipt-id": frame.header("receipt")}))
        return True

    def _unsubscribe(self, client_id: str, sub_id: Optional[str]) -> None:
        for destination in list(self.subscriptions):
            subs = self.subscriptions[destination]
            if subs.get(client_id) == sub_id:
                del subs[client_id]
                logger.info(f"Client {client_id} unsubscribed from {destination}")
            if not subs:
                del self.subscriptions[destination]

    async def _publish(self, sender: str, frame: Frame) -> None:
        destination = frame.header("destination")
        if not destination:
            await self._send_error(sender, "SEND requires a destination")
            return
        self.relayed += 1
        self.traffic.append({"seq": self.relayed, "destination": destination, "sender": sender, "body": frame.body})
        targets: List[tuple] = list(self.subscriptions.get(destination, {}).items())
        for client_id, sub_id in targets:
            await self._send(client_id, Frame("MESSAGE", {
                "destination": destination,
                "subscription": sub_id,
                "message-id": str(next(self._message_ids)),
                "content-type": frame.header("content-type", "application/json"),
            }, frame.body))

    async def _send(self, client_id: str, frame: Frame) -> None:
        websocket = self.connections.get(client_id)
        if websocket is None:
            return
        try:
            await websocket.send_text(encode_frame(frame))
        except Exception as e:
            logger.error(f"Failed to send message to {client_id}: {str(e)}")

    async def _send_error(self, client_id: str, message: str, detail: str = "") -> None:
        await self._send(client_id, Frame("ERROR", {"message": message}, detail))
