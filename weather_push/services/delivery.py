"""Delivery engine: pushes messages to connections and heals stale ones."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from weather_push.config import get_settings
from weather_push.schemas.push import PushMessage, encode_push
from weather_push.services.errors import EndpointGone, TransportError, UpstreamTransient
from weather_push.services.registry import ConnectionRegistry
from weather_push.services.resilience import call_with_retry
from weather_push.services.transport import PushTransport

logger = logging.getLogger(__name__)


class DeliveryStatus(StrEnum):
    """Result of one push attempt."""

    DELIVERED = "delivered"
    STALE = "stale"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Tagged result of ``DeliveryEngine.send``; never raised."""

    connection_id: str
    status: DeliveryStatus
    reason: str | None = None
    attempts: int = 0

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


class DeliveryEngine:
    """Sends push messages with bounded retry.

    A connection whose endpoint is gone is removed from the registry and
    reported as ``STALE``; that is routine and never raised to the caller.
    """

    def __init__(
        self,
        transport: PushTransport,
        registry: ConnectionRegistry,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.transport = transport
        self.registry = registry
        self.max_attempts = settings.delivery_max_attempts
        self.base_delay = settings.delivery_base_delay_seconds
        self.deadline = settings.delivery_deadline_seconds
        self._sleep = sleep

    async def send(
        self, connection_id: str, message: PushMessage, *, remove_if_gone: bool = True
    ) -> DeliveryOutcome:
        """Push one message to one connection.

        With ``remove_if_gone=False`` a gone endpoint is reported as ``FAILED``
        and the registry is left alone. The connect route uses this: the managed
        gateway answers 410 for posts made before its connect handler returns.
        """
        data = encode_push(message)
        attempts = 0

        async def attempt() -> None:
            nonlocal attempts
            attempts += 1
            await self.transport.post_to_connection(connection_id, data)

        try:
            await call_with_retry(
                attempt,
                attempts=self.max_attempts,
                base_delay=self.base_delay,
                retry_on=UpstreamTransient,
                deadline=self.deadline,
                description=f"push to {connection_id}",
                sleep=self._sleep,
            )
        except EndpointGone:
            if not remove_if_gone:
                logger.info(f"Connection {connection_id} not reachable yet, keeping it")
                return DeliveryOutcome(connection_id, DeliveryStatus.FAILED, "gone", attempts)
            logger.info(f"Connection {connection_id} is gone, removing it")
            await self._remove_stale(connection_id)
            return DeliveryOutcome(connection_id, DeliveryStatus.STALE, "gone", attempts)
        except (UpstreamTransient, TransportError) as e:
            logger.warning(f"Push to {connection_id} failed after {attempts} attempt(s): {e}")
            return DeliveryOutcome(connection_id, DeliveryStatus.FAILED, str(e), attempts)
        except Exception as e:
            logger.error(f"Unexpected error pushing to {connection_id}: {e}", exc_info=True)
            return DeliveryOutcome(connection_id, DeliveryStatus.FAILED, str(e), attempts)

        logger.debug(f"Sent {message.type} to {connection_id}")
        return DeliveryOutcome(connection_id, DeliveryStatus.DELIVERED, attempts=attempts)

    async def _remove_stale(self, connection_id: str) -> None:
        try:
            await self.registry.remove(connection_id)
        except Exception as e:
            # The record will age out via its TTL
            logger.error(f"Failed to remove stale connection {connection_id}: {e}")

    async def fan_out(
        self, connection_ids: list[str], message: PushMessage
    ) -> dict[str, DeliveryOutcome]:
        """Push the same message to many connections concurrently."""
        unique_ids = list(dict.fromkeys(connection_ids))
        outcomes = await asyncio.gather(
            *(self.send(connection_id, message) for connection_id in unique_ids)
        )
        delivered = sum(1 for outcome in outcomes if outcome.delivered)
        logger.info(f"Sent {message.type} to {delivered}/{len(unique_ids)} connection(s)")
        return {outcome.connection_id: outcome for outcome in outcomes}

    async def send_to_user(self, user_id: str, message: PushMessage) -> dict[str, DeliveryOutcome]:
        """Push a message to every active connection of a user."""
        records = await self.registry.list_for_user(user_id)
        if not records:
            logger.info(f"No active connections for user {user_id}")
            return {}
        return await self.fan_out([record.connection_id for record in records], message)
