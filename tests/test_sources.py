import unittest
from unittest import mock

import requests

from dedupe_ingest.errors import SourceTimeout, SourceUnavailable
from dedupe_ingest.ingestion.sources import JsonApiSource, RSSSource, StaticSource, parse_feed_list


RSS_BODY = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example</title>
    <item>
      <title> First story </title>
      <link>https://example.com/a</link>
      <pubDate>Mon, 05 Jan 2026 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>No link here</title>
    </item>
    <item>
      <title>Second story</title>
      <link>https://example.com/b</link>
    </item>
  </channel>
</rss>
"""


def _response(payload=None, content=b"", json_error=None):
    resp = mock.MagicMock()
    resp.raise_for_status.return_value = None
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = payload
    resp.content = content
    return resp


class TestJsonApiSource(unittest.TestCase):
    @mock.patch("dedupe_ingest.ingestion.sources.requests.get")
    def test_records_under_nested_path(self, get):
        get.return_value = _response({"data": {"items": [{"Name": "A"}, "junk", {"Name": "B"}]}})
        source = JsonApiSource("https://api.example.com/leads", records_path="data.items")

        records = source.fetch({"page_limit": 2})

        self.assertEqual([r["Name"] for r in records], ["A", "B"])
        self.assertEqual(records[0].ingestion_source, "json_api")
        self.assertEqual(get.call_args.kwargs["params"], {"page_limit": 2})

    @mock.patch("dedupe_ingest.ingestion.sources.requests.get")
    def test_limit_truncates_snapshot(self, get):
        get.return_value = _response([{"Name": str(i)} for i in range(5)])
        self.assertEqual(len(JsonApiSource("https://x", limit=2).fetch()), 2)

    @mock.patch("dedupe_ingest.ingestion.sources.requests.get")
    def test_timeout_maps_to_source_timeout(self, get):
        get.side_effect = requests.exceptions.Timeout("slow")
        with self.assertRaises(SourceTimeout):
            JsonApiSource("https://x", timeout=1).fetch()

    @mock.patch("dedupe_ingest.ingestion.sources.requests.get")
    def test_http_error_maps_to_source_unavailable(self, get):
        resp = _response([])
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError("503 Server Error")
        get.return_value = resp
        with self.assertRaises(SourceUnavailable):
            JsonApiSource("https://x").fetch()

    @mock.patch("dedupe_ingest.ingestion.sources.requests.get")
    def test_bad_payloads_are_unavailable(self, get):
        get.return_value = _response(json_error=ValueError("not json"))
        with self.assertRaises(SourceUnavailable):
            JsonApiSource("https://x").fetch()

        get.return_value = _response({"items": {"Name": "A"}})
        with self.assertRaises(SourceUnavailable):
            JsonApiSource("https://x", records_path="items").fetch()


class TestRSSSource(unittest.TestCase):
    @mock.patch("dedupe_ingest.ingestion.sources.requests.get")
    def test_entries_without_link_are_dropped(self, get):
        get.return_value = _response(content=RSS_BODY)
        records = RSSSource(feeds=[("Example", "https://example.com/rss")]).fetch()

        self.assertEqual([r["link"] for r in records], ["https://example.com/a", "https://example.com/b"])
        self.assertEqual(records[0]["title"], "First story")
        self.assertEqual(records[0]["feed"], "Example")

    @mock.patch("dedupe_ingest.ingestion.sources.requests.get")
    def test_limit_param_caps_entries(self, get):
        get.return_value = _response(content=RSS_BODY)
        records = RSSSource(feeds=[("Example", "https://example.com/rss")]).fetch({"limit": 1})
        self.assertEqual(len(records), 1)

    @mock.patch("dedupe_ingest.ingestion.sources.requests.get")
    def test_feed_timeout(self, get):
        get.side_effect = requests.exceptions.ConnectTimeout("slow")
        with self.assertRaises(SourceTimeout):
            RSSSource(feeds=[("Example", "https://example.com/rss")]).fetch()


class TestStaticSourceAndFeedList(unittest.TestCase):
    def test_static_source_replays_records(self):
        records = StaticSource(records=[{"Name": "A"}]).fetch()
        self.assertEqual(records[0]["Name"], "A")
        self.assertEqual(records[0].ingestion_source, "static")

    def test_parse_feed_list(self):
        feeds = parse_feed_list("BBC|https://bbc.example/rss; ;https://plain.example/rss")
        self.assertEqual(
            feeds,
            [("BBC", "https://bbc.example/rss"), ("https://plain.example/rss", "https://plain.example/rss")],
        )


if __name__ == "__main__":
    unittest.main()
