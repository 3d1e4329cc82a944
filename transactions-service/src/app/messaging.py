import asyncio
import logging
from aio_pika import connect_robust, ExchangeType
from aio_pika.abc import AbstractRobustConnection, AbstractRobustChannel
from app.config import Settings

logger = logging.getLogger("transactions.messaging")

TRANSACTION_EXCHANGE        = "transaction_exchange"
QUEUE_TRANSACTION_EVENTS    = "transaction_events"
QUEUE_PAYMENT_NOTIFICATIONS = "payment_notifications"

class RabbitClient:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.connection: AbstractRobustConnection | None = None
        self.channel:    AbstractRobustChannel     | None = None

    async def connect(self, retry_attempts: int = 5, retry_delay: int = 2) -> None:
        for attempt in range(1, retry_attempts + 1):
            try:
                logger.info(f"[Transactions] Connecting to RabbitMQ (attempt {attempt}/{retry_attempts})")
                self.connection = await connect_robust(self.settings.rabbit_url)
                self.channel    = await self.connection.channel()

                exchange = await self.channel.declare_exchange(
                    TRANSACTION_EXCHANGE, ExchangeType.DIRECT, durable=True
                )
                queue_events = await self.channel.declare_queue(
                    QUEUE_TRANSACTION_EVENTS, durable=True
                )
                await queue_events.bind(exchange, QUEUE_TRANSACTION_EVENTS)
                queue_notifications = await self.channel.declare_queue(
                    QUEUE_PAYMENT_NOTIFICATIONS, durable=True
                )
                await queue_notifications.bind(exchange, QUEUE_PAYMENT_NOTIFICATIONS)

                logger.info("[Transactions] RabbitMQ setup complete")
                return
            except Exception as e:
                logger.error(f"[Transactions] RabbitMQ init failed: {e}")
                if attempt < retry_attempts:
                    await asyncio.sleep(retry_delay)
                else:
                    logger.critical("[Transactions] Could not connect to RabbitMQ, giving up")
                    raise

    async def get_channel(self) -> AbstractRobustChannel:
        if self.channel is None:
            await self.connect()
        return self.channel

    async def close(self) -> None:
        if self.connection:
            await self.connection.close()
            logger.info("[Transactions] RabbitMQ connection closed")
