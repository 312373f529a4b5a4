import re
from urllib.parse import urljoin, urlparse, urlunparse


_TRACKING_PARAMS = re.compile(
    r"(?<![^&])(utm_[^=&]+|sessionid|fbclid|gclid|msclkid|ref)=[^&]*", re.IGNORECASE
)

# at least two labels, each 1-63 chars, total length <= 253
_HOST_RE = re.compile(
    r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9-]{2,63}$"
)

PSEUDO_LINK_PREFIXES = ("#", "mailto:", "tel:", "javascript:")


def _clean_tracking_params(query: str) -> str:
    clean_query = _TRACKING_PARAMS.sub("", query)
    clean_query = re.sub(r"&&+", "&", clean_query).strip("&")
    return clean_query


def _strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def normalize_domain(raw: str | None) -> str | None:
    """Canonical domain key for user input.

    Accepts a bare domain, a full URL or a URL with path/query and returns the
    lower-cased host without scheme, ``www.``, port, path, query or fragment.
    Returns ``None`` when no valid host can be extracted.
    """
    candidate = (raw or "").strip()
    if not candidate:
        return None

    if "://" not in candidate:
        candidate = f"https://{candidate}"

    try:
        parsed = urlparse(candidate)
        host = parsed.hostname
    except ValueError:
        return None

    if parsed.scheme.lower() not in ("http", "https") or not host:
        return None

    host = host.rstrip(".")
    try:
        host = host.encode("idna").decode("ascii")
    except UnicodeError:
        return None

    host = _strip_www(host.lower())
    if not _HOST_RE.match(host):
        return None
    return host


def build_start_url(domain: str) -> str:
    return f"https://{domain}"


def get_domain(url: str) -> str:
    """Host of a URL without ``www.`` and port; empty string on failure."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return _strip_www(host.lower().rstrip("."))


def is_internal(url: str, target_domain: str) -> bool:
    """True when ``url`` lives on ``target_domain`` (``www.`` ignored, other subdomains are external)."""
    domain = get_domain(url)
    return bool(domain) and domain == target_domain


def is_pseudo_link(href: str) -> bool:
    return href.strip().lower().startswith(PSEUDO_LINK_PREFIXES)


def absolutize(base_url: str, href: str) -> str | None:
    """Resolve ``href`` against ``base_url`` keeping query and fragment intact."""
    raw_link = (href or "").strip()
    if not raw_link or is_pseudo_link(raw_link):
        return None
    try:
        url = urljoin(base_url, raw_link)
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return url


def normalize_url(base_url: str, link: str) -> str | None:
    """Normalized form of a link used as the crawl visited key.

    Relative links are resolved, only http(s) is kept, the fragment and
    tracking parameters are dropped, duplicate slashes collapse and the
    trailing slash is removed for non-root paths.
    """
    url = absolutize(base_url, link)
    if url is None:
        return None

    parsed = urlparse(url)
    path = re.sub(r"/{2,}", "/", parsed.path or "/")
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    netloc = parsed.netloc.lower()
    if parsed.scheme == "http" and netloc.endswith(":80"):
        netloc = netloc[:-3]
    elif parsed.scheme == "https" and netloc.endswith(":443"):
        netloc = netloc[:-4]

    parsed = parsed._replace(
        netloc=netloc,
        path=path,
        query=_clean_tracking_params(parsed.query),
        fragment="",
    )
    return urlunparse(parsed)
