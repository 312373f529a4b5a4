from tortoise import fields, models


class CrawlErrorLog(models.Model):
    """
    Per-page fetch failures, kept for operators.
    """
    id = fields.IntField(pk=True)

    domain = fields.CharField(max_length=255, index=True)
    url = fields.CharField(max_length=2048)
    kind = fields.CharField(max_length=32)
    status_code = fields.IntField(null=True)
    error_message = fields.TextField(null=True)
    scan_id = fields.IntField(null=True)
    timestamp = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "crawl_error_logs"
        indexes = (("domain", "timestamp"),)
