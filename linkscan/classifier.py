from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from linkscan.utils.url_utils import get_domain


LINK_SOCIAL = "social"
LINK_DIRECTORY = "directory"
LINK_EDITORIAL = "editorial"
LINK_OTHER = "other"

LINK_TYPES = (LINK_SOCIAL, LINK_DIRECTORY, LINK_EDITORIAL, LINK_OTHER)

SOCIAL_HOSTS = (
    "facebook.com",
    "instagram.com",
    "tiktok.com",
    "x.com",
    "twitter.com",
    "linkedin.com",
    "pinterest.com",
    "youtube.com",
)

DIRECTORY_WORDS = ("directory", "listing", "yellowpages", "map", "wiki")

# display-only hints, checked after rel flags
_FORUM_WORDS = ("forum", "reddit.com", "quora.com", "community", "discourse", "board")
_NEWS_WORDS = ("news", "times", "post", "herald", "tribune", "journal", "gazette")
_ECOMMERCE_WORDS = ("shop", "store", "amazon.", "ebay.", "etsy.com", "aliexpress")


@dataclass(frozen=True)
class RelFlags:
    nofollow: bool = False
    sponsored: bool = False
    ugc: bool = False


def parse_rel(rel: Optional[str]) -> RelFlags:
    tokens = set((rel or "").lower().split())
    return RelFlags(
        nofollow="nofollow" in tokens,
        sponsored="sponsored" in tokens,
        ugc="ugc" in tokens,
    )


def classify_link(url: str) -> str:
    """Category of an outbound link from its host alone.

    Social networks are checked first, then directory-like hosts, everything
    else with a host is editorial.
    """
    domain = get_domain(url)
    if not domain:
        return LINK_OTHER

    if any(domain == host or domain.endswith("." + host) for host in SOCIAL_HOSTS):
        return LINK_SOCIAL

    if any(word in domain for word in DIRECTORY_WORDS):
        return LINK_DIRECTORY

    return LINK_EDITORIAL


def display_category(url: str, flags: RelFlags) -> str:
    """Richer label for dashboards: rel attributes first, then host hints."""
    if flags.sponsored:
        return "sponsored"
    if flags.ugc:
        return "ugc"

    domain = get_domain(url)
    if not domain:
        return LINK_OTHER

    tld = domain.rsplit(".", 1)[-1]
    if tld == "edu" or ".edu." in domain or ".ac." in domain:
        return "edu"
    if tld == "gov" or ".gov." in domain:
        return "gov"
    if "wiki" in domain:
        return "wiki"
    if any(word in domain for word in _FORUM_WORDS):
        return "forum"
    if any(word in domain for word in _NEWS_WORDS):
        return "news"
    if any(word in domain for word in _ECOMMERCE_WORDS):
        return "ecommerce"

    return classify_link(url)
