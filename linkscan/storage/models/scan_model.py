from tortoise import fields, models


SCAN_MODE_BASIC = "basic"
SCAN_MODE_PRO = "pro"

SCAN_SOURCE_USER = "user"
SCAN_SOURCE_INDEXER = "indexer"
SCAN_SOURCE_SWEEP = "sweep"


class BacklinkScan(models.Model):
    """
    One crawl execution against a target. Never updated once written;
    later scans supersede it.
    """
    id = fields.IntField(pk=True)

    domain = fields.CharField(max_length=255, index=True)
    user_id = fields.CharField(max_length=64, null=True, index=True)
    mode = fields.CharField(max_length=16, default=SCAN_MODE_BASIC)
    source = fields.CharField(max_length=16, default=SCAN_SOURCE_USER)

    total_backlinks = fields.IntField(default=0)
    ref_domains = fields.IntField(default=0)
    pages_crawled = fields.IntField(default=0)

    created_at = fields.DatetimeField(index=True)

    class Meta:
        table = "backlinks_scans"
        indexes = (("domain", "created_at"),)

    def __str__(self):
        return f"{self.domain} #{self.id} [{self.mode}]"
