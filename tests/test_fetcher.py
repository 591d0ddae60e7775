import asyncio
from datetime import datetime, timezone

import pytest

from errors import FeedFetchError
from fetcher import FeedFetcher, parse_article_date, sort_articles
from models import Article

RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example News</title>
    <link>https://example.com/</link>
    <description>Example feed</description>
    <item>
      <title>First story</title>
      <link>https://example.com/1</link>
      <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
      <pubDate>Sat, 15 Nov 2025 16:00:00 +0000</pubDate>
    </item>
    <item>
      <title>Second story</title>
      <link>https://example.com/2</link>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Source</title>
  <id>urn:example:feed</id>
  <updated>2025-11-16T10:00:00Z</updated>
  <entry>
    <title>Atom entry</title>
    <link href="https://example.org/a"/>
    <id>urn:example:a</id>
    <updated>2025-11-16T10:00:00Z</updated>
    <content type="html">&lt;p&gt;Body   text&lt;/p&gt;&lt;script&gt;alert(1)&lt;/script&gt;</content>
  </entry>
</feed>
"""


def test_parse_rss_feed_normalizes_entries():
    fetcher = FeedFetcher()
    articles = fetcher.parse_feed(RSS_FEED, "https://example.com/rss")

    assert len(articles) == 2
    first, second = articles
    assert first.headline == "First story"
    assert first.summary == "Hello world"
    assert first.date == "Sat, 15 Nov 2025 16:00:00 +0000"
    assert first.link == "https://example.com/1"
    assert first.source == "Example News"

    # Missing fields become empty strings
    assert second.summary == ""
    assert second.date == ""
    assert second.source == "Example News"


def test_parse_atom_feed_uses_content_and_updated():
    fetcher = FeedFetcher()
    articles = fetcher.parse_feed(ATOM_FEED, "https://example.org/atom")

    assert len(articles) == 1
    article = articles[0]
    assert article.headline == "Atom entry"
    assert article.summary == "Body text"
    assert article.date == "2025-11-16T10:00:00Z"
    assert article.link == "https://example.org/a"
    assert article.source == "Atom Source"


def test_parse_garbage_raises_feed_fetch_error():
    fetcher = FeedFetcher()
    with pytest.raises(FeedFetchError):
        fetcher.parse_feed(b"this is not a feed", "https://broken.example/")


@pytest.mark.asyncio
async def test_fetch_all_skips_failing_feeds(monkeypatch):
    fetcher = FeedFetcher()
    bodies = {
        "https://good.example/rss": RSS_FEED,
        "https://garbage.example/rss": b"this is not a feed",
        "https://atom.example/feed": ATOM_FEED,
    }

    async def fake_download(url, session):
        if url == "https://down.example/rss":
            raise FeedFetchError(url, "HTTP 503")
        return bodies[url]

    monkeypatch.setattr(fetcher, "_download", fake_download)

    articles, succeeded = await fetcher.fetch_all_with_stats([
        "https://good.example/rss",
        "https://down.example/rss",
        "https://garbage.example/rss",
        "https://atom.example/feed",
    ])
    await fetcher.close()

    assert succeeded == 2
    assert [a.headline for a in articles] == ["First story", "Second story", "Atom entry"]


@pytest.mark.asyncio
async def test_fetch_all_keeps_url_order(monkeypatch):
    fetcher = FeedFetcher()

    async def fake_download(url, session):
        # The first feed finishes last
        if "slow" in url:
            await asyncio.sleep(0.05)
            return RSS_FEED
        return ATOM_FEED

    monkeypatch.setattr(fetcher, "_download", fake_download)

    articles = await fetcher.fetch_all(["https://slow.example/rss", "https://fast.example/atom"])
    await fetcher.close()

    assert [a.source for a in articles] == ["Example News", "Example News", "Atom Source"]


@pytest.mark.asyncio
async def test_fetch_all_with_every_feed_failing(monkeypatch):
    fetcher = FeedFetcher()

    async def fake_download(url, session):
        raise FeedFetchError(url, "Network error")

    monkeypatch.setattr(fetcher, "_download", fake_download)

    articles, succeeded = await fetcher.fetch_all_with_stats(["https://a.example", "https://b.example"])
    await fetcher.close()

    assert articles == []
    assert succeeded == 0


def test_parse_article_date_formats():
    expected = datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc).timestamp()
    assert parse_article_date("Sat, 15 Nov 2025 16:00:00 +0000") == expected
    assert parse_article_date("15 Nov 2025 16:00:00 +0000") == expected
    assert parse_article_date("2025-11-15T16:00:00Z") == expected
    assert parse_article_date("2025-11-15T11:00:00-05:00") == expected
    # Naive ISO values are taken as UTC
    assert parse_article_date("2025-11-15T16:00:00") == expected


def test_parse_article_date_w3c_variants():
    expected = datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc).timestamp()
    # Seven fractional digits, as emitted by .NET-based feeds
    assert parse_article_date("2025-11-15T16:00:00.1234567Z") == expected
    assert parse_article_date("2025-11-15T16:00Z") == expected
    assert parse_article_date("2025-11-15") == datetime(2025, 11, 15, tzinfo=timezone.utc).timestamp()
    assert parse_article_date("Sat, 15 Nov 2025 16:00:00 GMT") == expected


def test_parse_article_date_fallback_to_epoch():
    assert parse_article_date("") == 0
    assert parse_article_date(None) == 0
    assert parse_article_date("   ") == 0
    assert parse_article_date("yesterday-ish") == 0


def test_sort_articles_newest_first_with_undated_last():
    articles = [
        Article(headline="undated-1"),
        Article(headline="old", date="Mon, 10 Nov 2025 08:00:00 +0000"),
        Article(headline="newest", date="2025-11-16T10:00:00Z"),
        Article(headline="undated-2", date="not a date"),
        Article(headline="middle", date="Sat, 15 Nov 2025 16:00:00 +0000"),
    ]

    ordered = sort_articles(articles)

    assert [a.headline for a in ordered] == ["newest", "middle", "old", "undated-1", "undated-2"]
    # Input is left untouched
    assert articles[0].headline == "undated-1"
