"""
Webhook routes for the WhatsApp Cloud API
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from ...flow.executor import ExecutionEngine
from ...models.webhook import InboundMessage, parse_webhook
from ..deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


async def process_inbound(engine: ExecutionEngine, channel_id: str, inbound: InboundMessage) -> None:
    """Background task: hand one inbound message to the engine"""
    outcome = await engine.handle_inbound_message(
        channel_id=channel_id,
        sender_id=inbound.sender_id,
        message_id=inbound.message_id,
        content=inbound.content,
        contact=inbound.contact
    )
    logger.info(f"Message {inbound.message_id} on channel {channel_id} -> {outcome.value}")


@router.get("/webhook/{channel_id}", response_class=PlainTextResponse)
async def verify_webhook(
    channel_id: str,
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    engine: ExecutionEngine = Depends(get_engine)
):
    """Meta callback verification"""
    if mode != "subscribe":
        raise HTTPException(status_code=403, detail="Invalid mode")

    channel = await engine.channels.get_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")

    if not channel.verify_token or token != channel.verify_token:
        logger.warning(f"Webhook verification failed for channel {channel_id}")
        raise HTTPException(status_code=403, detail="Invalid verify token")

    logger.info(f"Webhook verified for channel {channel_id}")
    return challenge or ""


@router.post("/webhook/{channel_id}")
async def receive_webhook(
    channel_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    engine: ExecutionEngine = Depends(get_engine)
):
    """
    Receive webhook from the WhatsApp Cloud API.

    Always answers 200: a non-success response makes Meta re-deliver the
    same message. Processing happens in a background task.
    """
    try:
        payload = await request.json()
        if not isinstance(payload, dict):
            logger.warning(f"Webhook body on channel {channel_id} is not a JSON object")
            return {"status": "ignored", "reason": "not a json object"}

        webhook = parse_webhook(payload)

        if not webhook.is_whatsapp:
            logger.warning(f"Non-WhatsApp payload on channel {channel_id}: object={webhook.object}")
            return {"status": "ignored", "reason": "not a whatsapp payload"}

        inbound = webhook.to_inbound()
        if inbound is None:
            reason = "status update" if webhook.is_status_event else "not a message event"
            return {"status": "ignored", "reason": reason}

        logger.info(
            f"Inbound {inbound.content.type} {inbound.message_id} from {inbound.sender_id} "
            f"on channel {channel_id}"
        )
        background_tasks.add_task(process_inbound, engine, channel_id, inbound)
        return {"status": "received"}

    except Exception as e:
        logger.exception(f"Webhook error: {e}")
        return {"status": "error", "message": str(e)}
