import re
from urllib.parse import urlparse

from linkscan.utils.url_utils import is_internal, is_pseudo_link

# extensions never fetched during same-domain traversal
BLOCKED_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico",
    ".zip", ".rar", ".7z", ".tar", ".gz", ".exe", ".apk", ".dmg", ".iso",
    ".mp4", ".mp3", ".avi", ".mov", ".wav", ".css", ".js", ".json", ".xml",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
)

_BLOCKED_RE = re.compile(
    "(?:" + "|".join(re.escape(ext) for ext in BLOCKED_EXTENSIONS) + r")$",
    re.IGNORECASE,
)


def is_probably_html(url: str) -> bool:
    """False when the URL path ends with a denylisted file extension."""
    try:
        path = urlparse(url).path
    except ValueError:
        return False
    return not _BLOCKED_RE.search(path)


def is_crawlable_link(target_domain: str, url: str) -> bool:
    """Whether a resolved URL may be queued for same-domain traversal."""
    if is_pseudo_link(url):
        return False

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False

    if not is_probably_html(url):
        return False

    # subdomains other than www are deliberately treated as external
    return is_internal(url, target_domain)
