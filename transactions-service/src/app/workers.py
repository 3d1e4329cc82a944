import asyncio
import json
import logging

from aio_pika import Message, ExchangeType
from aio_pika.abc import AbstractExchange
from pydantic import ValidationError
from sqlalchemy import func

from app.context import ServiceContext
from app.coordinator import TransactionCoordinator
from app.crud import get_pending_outbox
from app.db import session_scope
from app.messaging import (
    RabbitClient,
    TRANSACTION_EXCHANGE,
    QUEUE_TRANSACTION_EVENTS,
    QUEUE_PAYMENT_NOTIFICATIONS
)
from app.schemas import SettlementNotification

logger = logging.getLogger("transactions.workers")

async def publish_pending_outbox(ctx: ServiceContext, exchange: AbstractExchange) -> int:
    """Publishes every unpublished outbox row once. Returns how many were sent."""
    published = 0
    async for session in session_scope(ctx.session_factory):
        events = await get_pending_outbox(session)
        logger.info("[Transactions] Pending outbox events: %d", len(events))

        for ev in events:
            body = {"event_type": ev.event_type, **ev.payload}
            logger.info("[Transactions] Publishing event: %s", body)
            await exchange.publish(
                Message(body=json.dumps(body).encode()),
                routing_key=QUEUE_TRANSACTION_EVENTS
            )
            ev.published_at = func.now()
            session.add(ev)
            published += 1

        if events:
            await session.commit()
            logger.info("[Transactions] Outbox publish commit complete")
    return published

async def outbox_publisher(ctx: ServiceContext, rabbit: RabbitClient):
    INTERVAL = ctx.settings.OUTBOX_POLL_INTERVAL

    while True:
        channel = await rabbit.get_channel()
        exchange = await channel.declare_exchange(
            TRANSACTION_EXCHANGE, ExchangeType.DIRECT, durable=True
        )
        await publish_pending_outbox(ctx, exchange)
        await asyncio.sleep(INTERVAL)

async def process_settlement_message(coordinator: TransactionCoordinator, body: str) -> bool:
    """
    Разбирает уведомление провайдера и передаёт его в координатор.
    False - сообщение некорректно и пропущено.
    """
    logger.info("[Transactions] Received notification: %s", body)
    try:
        notification = SettlementNotification(**json.loads(body))
    except (ValueError, TypeError, ValidationError) as e:
        logger.error("[Transactions] Invalid notification format: %s", e)
        return False

    await coordinator.handle_settlement(notification)
    return True

async def settlement_consumer(coordinator: TransactionCoordinator, rabbit: RabbitClient):
    channel = await rabbit.get_channel()
    queue = await channel.declare_queue(QUEUE_PAYMENT_NOTIFICATIONS, durable=True)
    await channel.set_qos(prefetch_count=coordinator.ctx.settings.SETTLEMENT_CONSUMER_PREFETCH)

    logger.info("[Transactions] Starting settlement_consumer on '%s'", QUEUE_PAYMENT_NOTIFICATIONS)
    async with queue.iterator() as it:
        async for message in it:
            async with message.process():
                await process_settlement_message(coordinator, message.body.decode())
