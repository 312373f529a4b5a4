from tortoise import fields, models


class IndexedLink(models.Model):
    """
    Aggregate of every observation of one linking URL for a target domain.
    Rebuilt wholesale by the reindex job.
    """
    id = fields.IntField(pk=True)

    target_domain = fields.CharField(max_length=255, index=True)
    linking_domain = fields.CharField(max_length=255, index=True)
    linking_url = fields.CharField(max_length=2048)

    first_seen_at = fields.DatetimeField()
    last_seen_at = fields.DatetimeField()
    total_scans_seen = fields.IntField(default=1)
    last_scan_id = fields.IntField()
    last_scan_at = fields.DatetimeField()

    # metadata of the most recent observation
    link_type = fields.CharField(max_length=32, default="other")
    anchor = fields.TextField(null=True)
    nofollow = fields.BooleanField(default=False)
    sponsored = fields.BooleanField(default=False)
    ugc = fields.BooleanField(default=False)

    class Meta:
        table = "backlink_index_links"
        unique_together = (("target_domain", "linking_domain", "linking_url"),)
