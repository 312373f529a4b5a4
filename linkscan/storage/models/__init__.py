from .target_model import BacklinkTarget
from .scan_model import BacklinkScan
from .scan_link_model import ScanLink
from .indexed_link_model import IndexedLink
from .subscription_model import Subscription
from .quota_usage_model import QuotaUsage
from .crawl_error_log_model import CrawlErrorLog
from .report_setting_model import ReportSetting
from .email_send_model import EmailSend
from .toxic_sweep_setting_model import ToxicSweepSetting
from .toxic_sweep_model import ToxicSweep

__all__ = [
    "BacklinkTarget",
    "BacklinkScan",
    "ScanLink",
    "IndexedLink",
    "Subscription",
    "QuotaUsage",
    "CrawlErrorLog",
    "ReportSetting",
    "EmailSend",
    "ToxicSweepSetting",
    "ToxicSweep",
]
