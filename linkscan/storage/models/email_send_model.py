from tortoise import fields, models


class EmailSend(models.Model):
    """
    Log of transactional emails, used for open tracking.
    """
    id = fields.IntField(pk=True)

    user_id = fields.CharField(max_length=64, index=True)
    email = fields.CharField(max_length=320)
    type = fields.CharField(max_length=32)
    token = fields.CharField(max_length=64, unique=True)
    sent_at = fields.DatetimeField()
    total_backlinks = fields.IntField(default=0)
    ok = fields.BooleanField(default=False)
    error = fields.TextField(null=True)
    opened_at = fields.DatetimeField(null=True)

    class Meta:
        table = "email_sends"
