from tortoise import fields, models


class Subscription(models.Model):
    """
    Plan tier of a user as last reported by the billing provider.
    """
    id = fields.IntField(pk=True)

    user_id = fields.CharField(max_length=64, unique=True)
    plan = fields.CharField(max_length=32, default="free")
    status = fields.CharField(max_length=32, default="inactive")
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "proscan_subscriptions"
