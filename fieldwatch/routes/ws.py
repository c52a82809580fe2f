"""WebSocket live feeds backed by Redis pub/sub."""

from __future__ import annotations

import asyncio
import json
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from fieldwatch.services.events import parcel_channel, user_alert_channel

router = APIRouter(tags=["websocket"])


async def _parse_id(websocket: WebSocket, raw: str, error: str) -> uuid.UUID | None:
	try:
		return uuid.UUID(raw)
	except ValueError:
		await websocket.send_json({"error": error})
		await websocket.close(code=1008)
		return None


async def _forward(websocket: WebSocket, channel: str) -> None:
	redis_client = getattr(websocket.app.state, "redis", None)
	if redis_client is None:
		await websocket.send_json({"error": "redis_unavailable"})
		await websocket.close(code=1011)
		return

	pubsub = redis_client.pubsub()
	await pubsub.subscribe(channel)
	try:
		while True:
			message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
			if message is not None and message.get("type") == "message":
				payload = message.get("data")
				if isinstance(payload, bytes):
					payload = payload.decode("utf-8")
				if isinstance(payload, str):
					try:
						await websocket.send_json(json.loads(payload))
					except json.JSONDecodeError:
						await websocket.send_text(payload)
			await asyncio.sleep(0.05)
	except WebSocketDisconnect:
		return
	finally:
		await pubsub.unsubscribe(channel)
		await pubsub.close()


@router.websocket("/ws/parcels/{parcel_id}/live")
async def ws_parcel_feed(websocket: WebSocket, parcel_id: str) -> None:
	await websocket.accept()
	parcel_uuid = await _parse_id(websocket, parcel_id, "invalid_parcel_id")
	if parcel_uuid is None:
		return
	await _forward(websocket, parcel_channel(parcel_uuid))


@router.websocket("/ws/users/{user_id}/alerts")
async def ws_user_alerts(websocket: WebSocket, user_id: str) -> None:
	await websocket.accept()
	user_uuid = await _parse_id(websocket, user_id, "invalid_user_id")
	if user_uuid is None:
		return
	await _forward(websocket, user_alert_channel(user_uuid))
