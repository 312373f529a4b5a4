from linkscan.parsing.html_extractor import (
    Anchor,
    extract_anchors,
    extract_base_href,
    extract_title,
    parse_html,
)


def test_extract_title_handles_missing_and_whitespace():
    soup = parse_html("<html><head><title>  Sample Page  </title></head><body></body></html>")
    assert extract_title(soup) == "Sample Page"

    assert extract_title(parse_html("<html><head></head><body></body></html>")) == ""


def test_extract_anchors_collects_text_and_rel():
    html = (
        "<html><body>"
        "<a href='/about'>About   us</a>"
        "<a href='https://partner.com' rel='NoFollow Sponsored'><span>Our</span> partner</a>"
        "<a href=''>empty</a>"
        "<a name='anchor-only'>no href</a>"
        "<a href='https://img.com'><img src='x.png'></a>"
        "</body></html>"
    )

    anchors = extract_anchors(parse_html(html))

    assert anchors == [
        Anchor(href="/about", text="About us", rel=None),
        Anchor(href="https://partner.com", text="Our partner", rel="nofollow sponsored"),
        Anchor(href="https://img.com", text=None, rel=None),
    ]


def test_extract_base_href():
    soup = parse_html("<html><head><base href=' https://cdn.example.com/ '></head></html>")
    assert extract_base_href(soup) == "https://cdn.example.com/"

    assert extract_base_href(parse_html("<html><head></head></html>")) is None
