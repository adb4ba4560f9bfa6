from tortoise import fields, models
import uuid


class OutboxEvent(models.Model):
    """
    Domain events and notifications waiting for delivery. Rows written with the
    same connection as an order mutation commit or roll back together with it.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    aggregate_type = fields.CharField(max_length=64) # e.g., 'order', 'payment'
    aggregate_id = fields.UUIDField(null=True) # ID of the entity that generated the event
    event_type = fields.CharField(max_length=128) # e.g., 'order.created.v1'
    payload = fields.JSONField() # The actual event data
    published = fields.BooleanField(default=False)
    attempts = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "outbox_events"
        indexes = [
            ("published", "attempts", "created_at"),  # Poller scan
        ]
