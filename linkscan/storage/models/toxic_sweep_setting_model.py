from tortoise import fields, models


class ToxicSweepSetting(models.Model):
    """
    Scheduled toxic-link sweep of one domain, per user.
    """
    id = fields.IntField(pk=True)

    user_id = fields.CharField(max_length=64, unique=True)
    domain = fields.CharField(max_length=255)
    enabled = fields.BooleanField(default=True)
    cadence_days = fields.IntField(default=30)
    last_run_at = fields.DatetimeField(null=True, index=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "toxic_sweep_settings"
