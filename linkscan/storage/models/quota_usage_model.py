from tortoise import fields, models


class QuotaUsage(models.Model):
    """
    Daily pro scan counter of a user. ``reset_at`` is the next UTC midnight
    at the time of the last write.
    """
    id = fields.IntField(pk=True)

    user_id = fields.CharField(max_length=64, unique=True)
    used_today = fields.IntField(default=0)
    daily_limit = fields.IntField(default=0)
    reset_at = fields.DatetimeField()

    class Meta:
        table = "proscan_usage"
