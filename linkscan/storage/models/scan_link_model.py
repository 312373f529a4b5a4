from tortoise import fields, models


class ScanLink(models.Model):
    """
    One off-domain anchor discovered during a scan. Written once.
    """
    id = fields.IntField(pk=True)

    scan = fields.ForeignKeyField(
        "models.BacklinkScan",
        related_name="links",
        on_delete=fields.CASCADE,
    )

    source_page = fields.CharField(max_length=2048)
    target_url = fields.CharField(max_length=2048)
    target_domain = fields.CharField(max_length=255, index=True)

    anchor = fields.TextField(null=True)
    rel = fields.CharField(max_length=255, null=True)
    nofollow = fields.BooleanField(default=False)
    sponsored = fields.BooleanField(default=False)
    ugc = fields.BooleanField(default=False)
    link_type = fields.CharField(max_length=32, default="other")

    class Meta:
        table = "backlinks_scan_links"
