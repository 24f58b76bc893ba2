from fastapi import APIRouter, WebSocket
import redis.asyncio as aioredis
from app.config import REDIS_URL
from app.services.events_service import QUEUE_CHANNEL, job_channel

router = APIRouter()
r = aioredis.from_url(REDIS_URL, decode_responses=True)

async def _stream(websocket: WebSocket, channel: str, hello: dict):
    await websocket.accept()
    pubsub = r.pubsub()
    await pubsub.subscribe(channel)
    await websocket.send_json(hello)

    try:
        async for msg in pubsub.listen():
            if msg and msg.get("type") == "message":
                await websocket.send_text(msg["data"])
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()
        await websocket.close()

@router.websocket("/ws/jobs/{job_id}")
async def ws_job(job_id: int, websocket: WebSocket):
    await _stream(websocket, job_channel(job_id), {"type": "WS_CONNECTED", "job_id": job_id})

@router.websocket("/ws/queue")
async def ws_queue(websocket: WebSocket):
    await _stream(websocket, QUEUE_CHANNEL, {"type": "WS_CONNECTED"})
