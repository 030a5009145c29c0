"""
steam.py

Thin async client for the public Steam storefront endpoints:
  - search()     one page of store search results for a term
  - fetch_app()  app details + review summary for one app id, fetched together

Rate limiting is only detected here (HTTP 429/403 -> RateLimited). Backing off
is the caller's job.
"""
import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

STORE_URL = "https://store.steampowered.com"
SEARCH_URL = STORE_URL + "/search/results"
APPDETAILS_URL = STORE_URL + "/api/appdetails"
APPREVIEWS_URL_TEMPLATE = STORE_URL + "/appreviews/{}"
APP_PAGE_URL_TEMPLATE = STORE_URL + "/app/{}"

GAMES_CATEGORY = "998"
RATE_LIMIT_STATUSES = (403, 429)
PLATFORMS = ("windows", "mac", "linux")

DEFAULT_HEADERS = {"Accept": "application/json", "User-Agent": "undiscovered-steam/1.0"}


# ----------------- Errors -----------------
class SteamRequestError(Exception):
    """Base class for everything a store request can fail with."""


class RateLimited(SteamRequestError):
    def __init__(self, status: int = 429):
        super().__init__(f"too many requests (HTTP {status})")
        self.status = status


class TransportError(SteamRequestError):
    """
    The request did not produce a usable HTTP answer. `status` is None when the
    store could not be reached at all (connection refused, reset, timeout) and
    the HTTP status otherwise.
    """
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class DecodeError(SteamRequestError):
    """Response body does not have the expected shape."""


class OtherError(SteamRequestError):
    """Anything else that went wrong while fetching a single title."""


# ----------------- Data model -----------------
@dataclass(frozen=True)
class SearchMatch:
    name: str
    logo: str

    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> "SearchMatch":
        return cls(name=str(obj.get("name") or ""), logo=str(obj.get("logo") or ""))


@dataclass(frozen=True)
class PriceOverview:
    """Prices are integers in minor currency units (cents)."""
    currency: str
    initial: int
    final: int
    discount_percent: int = 0
    initial_formatted: str = ""
    final_formatted: str = ""

    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> "PriceOverview":
        return cls(
            currency=str(obj.get("currency", "")),
            initial=int(obj["initial"]),
            final=int(obj["final"]),
            discount_percent=int(obj.get("discount_percent", 0)),
            initial_formatted=str(obj.get("initial_formatted", "")),
            final_formatted=str(obj.get("final_formatted", "")),
        )

    @property
    def final_major(self) -> float:
        return self.final / 100.0


@dataclass(frozen=True)
class Platforms:
    windows: bool = False
    mac: bool = False
    linux: bool = False

    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> "Platforms":
        return cls(
            windows=bool(obj.get("windows", False)),
            mac=bool(obj.get("mac", False)),
            linux=bool(obj.get("linux", False)),
        )

    def supports(self, platform: str) -> bool:
        if platform not in PLATFORMS:
            raise ValueError(f"unknown platform: {platform!r}")
        return getattr(self, platform)


@dataclass(frozen=True)
class ReleaseDate:
    coming_soon: bool = False
    date: str = ""


@dataclass(frozen=True)
class ReviewSummary:
    num_reviews: int
    review_score: int
    review_score_desc: str
    total_positive: int
    total_negative: int
    total_reviews: int

    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> "ReviewSummary":
        return cls(
            num_reviews=int(obj["num_reviews"]),
            review_score=int(obj.get("review_score", 0)),
            review_score_desc=str(obj.get("review_score_desc", "")),
            total_positive=int(obj.get("total_positive", 0)),
            total_negative=int(obj.get("total_negative", 0)),
            total_reviews=int(obj["total_reviews"]),
        )


@dataclass(frozen=True)
class AppDetails:
    app_type: str
    name: str
    steam_appid: int
    required_age: int
    is_free: bool
    supported_languages: str
    developers: List[str]
    publishers: List[str]
    price_overview: Optional[PriceOverview]  # None -> free
    platforms: Platforms
    categories: List[Tuple[int, str]] = field(default_factory=list)
    genres: List[Tuple[str, str]] = field(default_factory=list)
    release_date: ReleaseDate = field(default_factory=ReleaseDate)

    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> "AppDetails":
        price = obj.get("price_overview")
        release = obj.get("release_date") or {}
        return cls(
            app_type=str(obj.get("type", "")),
            name=str(obj["name"]),
            steam_appid=int(obj["steam_appid"]),
            # required_age comes back as either an int or a numeric string
            required_age=int(obj.get("required_age") or 0),
            is_free=bool(obj.get("is_free", False)),
            supported_languages=str(obj.get("supported_languages", "")),
            developers=[str(d) for d in obj.get("developers") or []],
            publishers=[str(p) for p in obj.get("publishers") or []],
            price_overview=PriceOverview.from_json(price) if price else None,
            platforms=Platforms.from_json(obj.get("platforms") or {}),
            categories=[(int(c["id"]), str(c.get("description", ""))) for c in obj.get("categories") or []],
            genres=[(str(g["id"]), str(g.get("description", ""))) for g in obj.get("genres") or []],
            release_date=ReleaseDate(coming_soon=bool(release.get("coming_soon", False)),
                                     date=str(release.get("date", ""))),
        )


@dataclass(frozen=True)
class App:
    """One fully fetched title: store details plus its review summary."""
    details: AppDetails
    reviews: ReviewSummary

    @property
    def appid(self) -> int:
        return self.details.steam_appid

    @property
    def name(self) -> str:
        return self.details.name

    @property
    def price(self) -> Optional[PriceOverview]:
        return self.details.price_overview

    @property
    def platforms(self) -> Platforms:
        return self.details.platforms

    @property
    def final_price(self) -> Optional[float]:
        if self.price is None:
            return None
        return self.price.final_major

    @property
    def store_url(self) -> str:
        return APP_PAGE_URL_TEMPLATE.format(self.appid)


# ----------------- Helpers -----------------
def extract_appid(logo: str) -> str:
    """
    Search result thumbnails look like
      https://cdn.akamai.steamstatic.com/steam/apps/<appid>/capsule_sm_120.jpg
    so the app id is segment 5 of the '/'-split URL.
    """
    segments = logo.split("/")
    if len(segments) < 6:
        raise DecodeError(f"cannot extract app id from {logo!r}")
    return segments[5]


def format_maxprice(max_price: float) -> str:
    if max_price <= 0:
        return "free"
    return str(int(round(max_price * 100)))


def _decode_json(text: str, what: str) -> Any:
    try:
        return json.loads(text) if text else None
    except ValueError as e:
        raise DecodeError(f"{what}: invalid json ({e})") from e


async def _get(session: aiohttp.ClientSession, url: str, params: Dict[str, str]) -> Tuple[int, str]:
    """GET and return (status, body text). Network failures become TransportError."""
    try:
        async with session.get(url, params=params, headers=DEFAULT_HEADERS) as resp:
            status = resp.status
            try:
                text = await resp.text()
            except UnicodeDecodeError:
                # empty body fails the shape checks later, after the status checks
                text = ""
            return status, text
    except asyncio.TimeoutError as e:
        raise TransportError(f"{url}: timeout") from e
    except aiohttp.ClientError as e:
        raise TransportError(f"{url}: {e}") from e


# ----------------- Endpoints -----------------
async def search(session: aiohttp.ClientSession, max_price: float, term: str) -> List[SearchMatch]:
    params = {
        "term": term,
        "maxprice": format_maxprice(max_price),
        "json": "1",
        "category1": GAMES_CATEGORY,
        "sort_by": "Released_DESC",
    }
    status, text = await _get(session, SEARCH_URL, params)
    if status in RATE_LIMIT_STATUSES:
        raise RateLimited(status)
    if not 200 <= status < 300:
        raise TransportError(f"search: unexpected HTTP {status}", status=status)

    data = _decode_json(text, "search")
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise DecodeError("search: response has no item list")
    return [SearchMatch.from_json(it) for it in data["items"] if isinstance(it, dict)]


async def fetch_app(session: aiohttp.ClientSession, appid: str) -> App:
    """
    Fetch details and review summary for `appid` concurrently.

    Both responses are awaited; if either one is rate limited we bail out
    before touching any body.
    """
    replies = await asyncio.gather(
        _get(session, APPDETAILS_URL, {"appids": appid}),
        _get(session, APPREVIEWS_URL_TEMPLATE.format(appid), {"json": "1", "purchase_type": "all"}),
        return_exceptions=True,
    )
    # a rate limit on either side wins over a failure on the other
    for reply in replies:
        if not isinstance(reply, BaseException) and reply[0] in RATE_LIMIT_STATUSES:
            raise RateLimited(reply[0])
    for reply in replies:
        if isinstance(reply, BaseException):
            raise reply
    (data_status, data_text), (reviews_status, reviews_text) = replies
    for status in (data_status, reviews_status):
        if not 200 <= status < 300:
            raise TransportError(f"app {appid}: unexpected HTTP {status}", status=status)

    data = _decode_json(data_text, f"appdetails {appid}")
    if not isinstance(data, dict) or appid not in data:
        raise DecodeError(f"appdetails {appid}: invalid response")
    entry = data[appid]
    if not isinstance(entry, dict) or not entry.get("success") or not isinstance(entry.get("data"), dict):
        raise DecodeError(f"appdetails {appid}: unsuccessful lookup")

    reviews = _decode_json(reviews_text, f"appreviews {appid}")
    if not isinstance(reviews, dict) or not isinstance(reviews.get("query_summary"), dict):
        raise DecodeError(f"appreviews {appid}: no query_summary")

    try:
        details = AppDetails.from_json(entry["data"])
        summary = ReviewSummary.from_json(reviews["query_summary"])
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"app {appid}: malformed payload ({e!r})") from e
    return App(details=details, reviews=summary)
