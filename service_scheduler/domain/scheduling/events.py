"""
Appointment events handed to the notification worker.

Events are collected while a unit of work runs and published only after it
commits, so a rolled-back booking never produces a notification.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from arq import create_pool

from ...config import APPOINTMENT_EVENTS_ENABLED
from ...models import utcnow
from ...worker import get_redis_settings

logger = logging.getLogger(__name__)

APPOINTMENT_CREATED = "appointment.created"
APPOINTMENT_STATUS_CHANGED = "appointment.status_changed"

EVENT_TASK_NAME = "handle_appointment_event_task"


@dataclass(frozen=True)
class AppointmentEvent:
    name: str
    tenant_id: str
    appointment_id: int
    appointment_number: str
    new_status: str
    previous_status: Optional[str] = None
    action: Optional[str] = None
    actor_id: Optional[str] = None
    occurred_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_payload(self) -> dict:
        return asdict(self)


class ArqEventPublisher:
    """Queues events on the ARQ worker; failures are logged, never raised"""

    async def publish(self, events: list[AppointmentEvent]) -> int:
        if not events or not APPOINTMENT_EVENTS_ENABLED:
            return 0

        queued = 0
        try:
            pool = await create_pool(get_redis_settings())
            try:
                for evt in events:
                    await pool.enqueue_job(EVENT_TASK_NAME, evt.to_payload())
                    queued += 1
                    logger.info(f"📋 Queued {evt.name} for appointment {evt.appointment_id}")
            finally:
                await pool.close()
        except Exception as e:
            # Notification failures must not fail an already committed booking
            logger.warning(f"⚠️ Failed to queue appointment events: {e}")
        return queued


def get_event_publisher() -> ArqEventPublisher:
    """Dependency injection for the event publisher"""
    return ArqEventPublisher()
