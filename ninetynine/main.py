"""Development broker: a FastAPI STOMP relay the client can talk to."""

import asyncio
import logging
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from sse_starlette.sse import EventSourceResponse

from ninetynine.core.exceptions import ClientError
from ninetynine.core.relay import TopicRelay

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="1 to 99 Dev Broker", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # development only
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

relay = TopicRelay()


@app.get("/")
async def root():
    """Root endpoint returning broker information."""
    return {
        "message": "1 to 99 Dev Broker",
        "version": "1.0.0",
        "endpoints": {
            "websocket": "/ws",
            "topics": "/topics",
            "logs": "/logs"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "connected_clients": len(relay.connections),
        "relayed_messages": relay.relayed
    }


@app.get("/topics")
async def get_topics():
    """Subscriber count per destination."""
    return relay.topic_counts()


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """STOMP over WebSocket endpoint."""
    client_id = await relay.connect(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            try:
                if not await relay.handle_message(client_id, message):
                    break
            except ClientError as e:
                logger.warning(str(e))

    except WebSocketDisconnect:
        logger.info(f"Client {client_id} disconnected")
    except Exception as e:
        logger.error(f"WebSocket error for client {client_id}: {str(e)}")
    finally:
        relay.disconnect(client_id)


@app.get("/logs")
async def logs():
    """Stream relayed traffic as server-sent events."""
    async def event_generator():
        last = relay.relayed
        while True:
            for entry in list(relay.traffic):
                if entry["seq"] > last:
                    last = entry["seq"]
                    yield {"event": "relay", "id": str(last), "data": f"{entry['destination']} {entry['body']}"}
            await asyncio.sleep(0.1)

    return EventSourceResponse(event_generator())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "ninetynine.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level="info"
    )
