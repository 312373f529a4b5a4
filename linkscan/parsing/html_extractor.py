from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from bs4 import BeautifulSoup


@dataclass(frozen=True)
class Anchor:
    href: str
    text: Optional[str]
    rel: Optional[str]


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def extract_title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return ""


def extract_base_href(soup: BeautifulSoup) -> Optional[str]:
    base = soup.find("base", href=True)
    if base is None:
        return None
    href = base["href"].strip()
    return href or None


def extract_anchors(soup: BeautifulSoup) -> List[Anchor]:
    """Every ``<a href>`` in document order with its text and rel attribute.

    Hrefs are returned raw; resolution and filtering belong to the caller.
    """
    anchors: List[Anchor] = []
    for tag in soup.find_all("a", href=True):
        href = tag["href"].strip()
        if not href:
            continue

        rel = tag.get("rel")
        # bs4 returns rel as a list of tokens
        if isinstance(rel, list):
            rel = " ".join(rel)
        rel = rel.strip().lower() if rel else None

        text = " ".join(tag.get_text(separator=" ", strip=True).split()) or None
        anchors.append(Anchor(href=href, text=text, rel=rel))

    return anchors
