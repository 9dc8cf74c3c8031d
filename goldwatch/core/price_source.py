#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Price sources for the ingestion controller.

Exposes two adapters that both normalize into a `Reading`:
- DirectPriceSource: one bounded-timeout GET against the live price endpoint
- FeedMirrorSource: reads the static mirror pair (latest + history documents)
  written by the background updater, over HTTP(S) or from local files

Price extraction from response bodies is an explicit ordered list of
strategies (PRICE_EXTRACTORS); the first one that yields a value wins.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

import requests

from ..shared.models import PricePoint, Reading, Source
from ..shared.utils import normalize_price, to_number_loose, utc_now_iso


BODY_READ_CHUNK = 1
MAX_BODY_BYTES = 64 * 1024


class SourceError(Exception):
    """Base class for a failed fetch attempt"""


class FetchTimeout(SourceError):
    """The live endpoint exceeded its deadline"""


class HttpError(SourceError):
    """Non-success status, or a transport failure when status is None"""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ParseError(SourceError):
    """Body is malformed or carries no usable price"""


def _bare_number(body: Any) -> Any:
    if isinstance(body, (int, float, str)) and not isinstance(body, bool):
        return body
    return None


def _field(*path: str) -> Callable[[Any], Any]:
    def extract(body: Any) -> Any:
        node = body
        for key in path:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        return node
    extract.__name__ = "field:" + ".".join(path)
    return extract


PRICE_EXTRACTORS: Tuple[Callable[[Any], Any], ...] = (
    _bare_number,
    _field("price"),
    _field("value"),
    _field("data", "price"),
)


def extract_price(body: Any) -> float:
    """
    Pull the ounce price out of a decoded JSON body

    Args:
        body: Decoded JSON (number, string or mapping)

    Returns:
        Price rounded to cents

    Raises:
        ParseError: If no strategy applies or the value is not a finite number
    """
    raw = None
    for extractor in PRICE_EXTRACTORS:
        raw = extractor(body)
        if raw is not None:
            break
    if raw is None:
        raise ParseError("No price field in response")
    price = normalize_price(to_number_loose(raw))
    if price is None:
        raise ParseError(f"Invalid price in response: {str(raw)[:64]!r}")
    return price


class DirectPriceSource:
    def __init__(self, *, api_url: str, timeout_s: float, session: Optional[requests.Session] = None, user_agent: str = "goldwatch/1.0") -> None:
        self.api_url = api_url
        self.timeout_s = timeout_s
        self.log = logging.getLogger(__name__)
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent, "Accept": "application/json", "Cache-Control": "no-cache"})

    def _read_body(self, r: requests.Response, started: float) -> bytes:
        """
        Read the body under the wall-clock deadline

        The socket timeout bounds each read only. Reads are byte-sized, so a
        blocked read ends at most one socket timeout past the deadline.
        """
        body = bytearray()
        for chunk in r.iter_content(chunk_size=BODY_READ_CHUNK):
            if time.monotonic() - started > self.timeout_s:
                raise FetchTimeout(f"Live endpoint exceeded its {self.timeout_s}s deadline while sending the body")
            body.extend(chunk)
            if len(body) > MAX_BODY_BYTES:
                raise ParseError(f"Live endpoint response larger than {MAX_BODY_BYTES} bytes")
        return bytes(body)

    def fetch_direct(self) -> Reading:
        """Single attempt bounded by `timeout_s` overall; never retried here (the next tick is the retry)."""
        self.log.debug(f"Direct GET {self.api_url} timeout={self.timeout_s}s")
        started = time.monotonic()
        try:
            r = self._session.get(self.api_url, timeout=self.timeout_s, stream=True)
        except requests.exceptions.Timeout:
            raise FetchTimeout(f"Live endpoint timed out after {self.timeout_s}s")
        except requests.exceptions.RequestException as e:
            raise HttpError(f"Live endpoint unreachable: {e}")
        try:
            raw = self._read_body(r, started)
        except requests.exceptions.RequestException as e:
            if time.monotonic() - started >= self.timeout_s:
                raise FetchTimeout(f"Live endpoint timed out after {self.timeout_s}s: {e}")
            raise HttpError(f"Live endpoint dropped the response: {e}")
        finally:
            r.close()
        if r.status_code != 200:
            snippet = raw[:200].decode("utf-8", errors="replace")
            raise HttpError(f"HTTP {r.status_code}: {snippet}", status=r.status_code)
        try:
            body = json.loads(raw)
        except ValueError as e:
            raise ParseError(f"Live endpoint returned invalid JSON: {e}")
        price = extract_price(body)
        self.log.debug(f"Direct GET OK price={price}")
        return Reading(price=price, timestamp=utc_now_iso(), source=Source.DIRECT)


@dataclass(frozen=True)
class FeedPair:
    latest: Optional[Reading]
    history: Optional[List[PricePoint]]


class FeedMirrorSource:
    """
    Reads the static mirror documents.

    Locations may be http(s) URLs, fetched with cache-bypass (no-cache header
    plus a cache-busting query parameter), or plain file paths.
    """

    def __init__(self, *, latest_url: str, history_url: str, timeout_s: float = 8.0, session: Optional[requests.Session] = None, base_dir: Optional[Path] = None) -> None:
        self.latest_url = latest_url
        self.history_url = history_url
        self.timeout_s = timeout_s
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        self.log = logging.getLogger(__name__)
        self._session = session or requests.Session()

    def _read_document(self, location: str) -> Any:
        if location.startswith(("http://", "https://")):
            try:
                r = self._session.get(
                    location,
                    params={"_": str(int(time.time() * 1000))},
                    headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
                    timeout=self.timeout_s,
                )
            except requests.exceptions.Timeout:
                raise FetchTimeout(f"Mirror document timed out: {location}")
            except requests.exceptions.RequestException as e:
                raise HttpError(f"Mirror document unreachable: {location}: {e}")
            if r.status_code != 200:
                raise HttpError(f"HTTP {r.status_code} for {location}", status=r.status_code)
            try:
                return r.json()
            except ValueError as e:
                raise ParseError(f"Invalid JSON in {location}: {e}")

        path = Path(location)
        if not path.is_absolute():
            path = self.base_dir / path
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise HttpError(f"Mirror document not found: {path}", status=404)
        except OSError as e:
            raise HttpError(f"Mirror document unreadable: {path}: {e}")
        try:
            return json.loads(text)
        except ValueError as e:
            raise ParseError(f"Invalid JSON in {path}: {e}")

    def fetch_latest(self) -> Optional[Reading]:
        doc = self._read_document(self.latest_url)
        if not isinstance(doc, dict):
            raise ParseError("Latest document must be a JSON object")
        if doc.get("price") is None:
            # updater has not produced a value yet
            return None
        price = extract_price({"price": doc.get("price")})
        ts = doc.get("updated_at") or utc_now_iso()
        return Reading(price=price, timestamp=str(ts), source=Source.FEED)

    def fetch_history(self) -> Optional[List[PricePoint]]:
        """Shared seed series; any failure degrades to None."""
        try:
            doc = self._read_document(self.history_url)
        except SourceError as e:
            self.log.warning(f"Feed history unavailable: {e}")
            return None
        raw_points = doc.get("points") if isinstance(doc, dict) else None
        if not isinstance(raw_points, list):
            self.log.warning("Feed history has no 'points' list; ignoring")
            return None
        points = [pt for pt in (PricePoint.from_dict(p) for p in raw_points) if pt is not None]
        skipped = len(raw_points) - len(points)
        if skipped:
            self.log.debug(f"Feed history: skipped {skipped} malformed points")
        return points

    def fetch_pair(self) -> FeedPair:
        latest = self.fetch_latest()
        return FeedPair(latest=latest, history=self.fetch_history())
