from tortoise import fields, models


class BacklinkTarget(models.Model):
    """
    A domain being monitored. Created on the first scan request.
    """
    id = fields.IntField(pk=True)

    domain = fields.CharField(max_length=255, unique=True)
    user_id = fields.CharField(max_length=64, null=True, index=True)

    # set by the reindex job
    last_indexed = fields.DatetimeField(null=True, index=True)

    # set by the scheduled indexer crawl
    last_crawled = fields.DatetimeField(null=True, index=True)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "backlink_targets"

    def __str__(self):
        return self.domain
