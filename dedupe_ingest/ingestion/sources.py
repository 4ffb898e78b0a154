"""Upstream sources producing one bounded snapshot of candidate records per call.

Each source turns transport failures into `SourceUnavailable` / `SourceTimeout`
and returns normalized `CandidateRecord`s. `params` is opaque pass-through
configuration (page limits, lookback window, ...); the pipeline never reads it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import feedparser
import requests

from dedupe_ingest.errors import SourceTimeout, SourceUnavailable
from dedupe_ingest.ingestion.record_types import CandidateRecord

logger = logging.getLogger(__name__)

USER_AGENT = "dedupe-ingest/1.0"


def _dig(payload: Any, dotted_path: Optional[str]) -> Any:
    """Follow a dotted path ("data.items") into nested dicts."""
    if not dotted_path:
        return payload
    node = payload
    for part in dotted_path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


class BaseSource:
    name: str = "base"

    def fetch(self, params: Optional[Mapping[str, Any]] = None) -> List[CandidateRecord]:
        raise NotImplementedError


@dataclass(frozen=True)
class JsonApiSource(BaseSource):
    """GET a JSON endpoint returning a list of objects (optionally nested under `records_path`)."""

    endpoint: str
    records_path: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    limit: Optional[int] = None

    name: str = "json_api"

    def fetch(self, params: Optional[Mapping[str, Any]] = None) -> List[CandidateRecord]:
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json", **self.headers}
        try:
            resp = requests.get(self.endpoint, params=dict(params or {}), headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise SourceTimeout(f"{self.endpoint} timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise SourceUnavailable(f"{self.endpoint} request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise SourceUnavailable(f"{self.endpoint} returned non-JSON content") from e

        items = _dig(data, self.records_path)
        if not isinstance(items, list):
            raise SourceUnavailable(
                f"{self.endpoint} payload has no record list at {self.records_path or '<root>'!r}"
            )

        out: List[CandidateRecord] = []
        skipped = 0
        for item in items:
            if not isinstance(item, dict):
                skipped += 1
                continue
            out.append(CandidateRecord.from_mapping(item, ingestion_source=self.name))
        if skipped:
            logger.warning(f"{self.endpoint}: ignored {skipped} non-object entries")
        if self.limit is not None:
            out = out[: max(0, self.limit)]
        return out


@dataclass(frozen=True)
class RSSSource(BaseSource):
    """Generic RSS ingestor for a list of feed URLs."""

    feeds: Sequence[Tuple[str, str]]  # (feed_name, feed_url)
    limit: int = 200
    timeout: float = 30.0
    name: str = "rss"

    def fetch(self, params: Optional[Mapping[str, Any]] = None) -> List[CandidateRecord]:
        limit = int((params or {}).get("limit", self.limit))
        out: List[CandidateRecord] = []
        for feed_name, feed_url in self.feeds:
            # feedparser swallows transport errors, so the body is fetched here
            # and only parsed by feedparser.
            try:
                resp = requests.get(feed_url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
                resp.raise_for_status()
            except requests.exceptions.Timeout as e:
                raise SourceTimeout(f"feed {feed_name!r} timed out after {self.timeout}s") from e
            except requests.exceptions.RequestException as e:
                raise SourceUnavailable(f"feed {feed_name!r} request failed: {e}") from e

            parsed = feedparser.parse(resp.content)
            if getattr(parsed, "bozo", False) and not parsed.entries:
                raise SourceUnavailable(f"feed {feed_name!r} could not be parsed: {parsed.get('bozo_exception')}")

            for entry in parsed.entries or []:
                link = entry.get("link")
                title = entry.get("title")
                if not link or not title:
                    continue
                out.append(
                    CandidateRecord.from_mapping(
                        {
                            "title": str(title).strip(),
                            "link": str(link).strip(),
                            "published": entry.get("published") or entry.get("updated"),
                            "summary": entry.get("summary"),
                            "feed": feed_name,
                        },
                        ingestion_source=self.name,
                    )
                )
                if len(out) >= limit:
                    return out
        return out


@dataclass(frozen=True)
class StaticSource(BaseSource):
    """Replays a fixed list of records (manual backfills, dry runs)."""

    records: Sequence[Mapping[str, Any]] = ()
    name: str = "static"

    def fetch(self, params: Optional[Mapping[str, Any]] = None) -> List[CandidateRecord]:
        out = []
        for item in self.records:
            if isinstance(item, CandidateRecord):
                out.append(item)
            else:
                out.append(CandidateRecord.from_mapping(item, ingestion_source=self.name))
        return out


def parse_feed_list(raw: str) -> List[Tuple[str, str]]:
    """Parse "name|url;name|url" into (name, url) pairs; a bare url is its own name."""
    feeds: List[Tuple[str, str]] = []
    for chunk in (raw or "").split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        if "|" in chunk:
            name, url = chunk.split("|", 1)
            feeds.append((name.strip() or url.strip(), url.strip()))
        else:
            feeds.append((chunk, chunk))
    return feeds
