from tortoise import fields, models
import uuid


class ProcessedEvent(models.Model):
    """
    Idempotency marker for consumers. Stores the UUID of an OutboxEvent
    so a redelivered event is handled only once.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    event_id = fields.CharField(max_length=128, unique=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "processed_events"
