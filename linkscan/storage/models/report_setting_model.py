from tortoise import fields, models


class ReportSetting(models.Model):
    """
    Weekly report preferences of a user.
    """
    id = fields.IntField(pk=True)

    user_id = fields.CharField(max_length=64, unique=True)
    email = fields.CharField(max_length=320)
    weekly_reports_enabled = fields.BooleanField(default=True)
    last_report_at = fields.DatetimeField(null=True, index=True)

    class Meta:
        table = "report_settings"
