from tortoise import fields, models


class ToxicSweep(models.Model):
    """
    Outcome of one toxic-link sweep.
    """
    id = fields.IntField(pk=True)

    user_id = fields.CharField(max_length=64, index=True)
    domain = fields.CharField(max_length=255, index=True)
    mode = fields.CharField(max_length=16)
    scan_id = fields.IntField(null=True)

    total_backlinks = fields.IntField(default=0)
    ref_domains = fields.IntField(default=0)
    toxic_links = fields.IntField(default=0)
    toxic_percent = fields.IntField(default=0)
    error = fields.TextField(null=True)

    created_at = fields.DatetimeField()

    class Meta:
        table = "toxic_sweeps"
