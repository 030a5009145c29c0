import asyncio
import itertools
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from undiscovered_steam.steam import APPDETAILS_URL, SEARCH_URL, STORE_URL


def logo(appid) -> str:
    return f"https://cdn.akamai.steamstatic.com/steam/apps/{appid}/capsule_sm_120.jpg?t=1700000000"


def search_body(*appids) -> str:
    items = [{"name": f"Game {a}", "logo": logo(a)} for a in appids]
    return json.dumps({"desc": "", "items": items})


def details_body(appid, name: Optional[str] = None, price: Optional[int] = None,
                 windows: bool = True, mac: bool = False, linux: bool = False) -> str:
    data: Dict[str, Any] = {
        "type": "game",
        "name": name or f"Game {appid}",
        "steam_appid": int(appid),
        "required_age": 0,
        "is_free": price is None,
        "supported_languages": "English",
        "developers": ["Someone"],
        "publishers": ["Someone"],
        "platforms": {"windows": windows, "mac": mac, "linux": linux},
        "categories": [{"id": 2, "description": "Single-player"}],
        "genres": [{"id": "23", "description": "Indie"}],
        "release_date": {"coming_soon": False, "date": "1 Jan, 2024"},
    }
    if price is not None:
        data["price_overview"] = {
            "currency": "USD",
            "initial": price,
            "final": price,
            "discount_percent": 0,
            "initial_formatted": "",
            "final_formatted": f"${price / 100:.2f}",
        }
    return json.dumps({str(appid): {"success": True, "data": data}})


def reviews_body(total_reviews: int, num_reviews: Optional[int] = None) -> str:
    return json.dumps({
        "success": 1,
        "query_summary": {
            "num_reviews": total_reviews if num_reviews is None else num_reviews,
            "review_score": 0,
            "review_score_desc": "No user reviews",
            "total_positive": total_reviews,
            "total_negative": 0,
            "total_reviews": total_reviews,
        },
    })


Reply = Union[Tuple[int, str], Tuple[int, str, float], BaseException]


class FakeResponse:
    def __init__(self, reply: Reply):
        self._reply = reply

    async def __aenter__(self):
        if isinstance(self._reply, BaseException):
            raise self._reply
        self.status = self._reply[0]
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self) -> str:
        if len(self._reply) > 2:
            await asyncio.sleep(self._reply[2])
        return self._reply[1]


class FakeStore:
    """
    Stands in for aiohttp.ClientSession. Search replies are consumed in order
    (the last one repeats); detail and review replies are looked up by app id.
    """

    def __init__(self):
        self.search_replies: List[Reply] = []
        self.details: Dict[str, Reply] = {}
        self.reviews: Dict[str, Reply] = {}
        self.calls: List[Tuple[str, Dict[str, str]]] = []

    def add_app(self, appid, total_reviews: int = 0, **kwargs):
        self.details[str(appid)] = (200, details_body(appid, **kwargs))
        self.reviews[str(appid)] = (200, reviews_body(total_reviews))

    def get(self, url, params=None, headers=None):
        params = dict(params or {})
        self.calls.append((url, params))
        if url == SEARCH_URL:
            if len(self.search_replies) > 1:
                reply = self.search_replies.pop(0)
            else:
                reply = self.search_replies[0]
        elif url == APPDETAILS_URL:
            reply = self.details[params["appids"]]
        elif url.startswith(STORE_URL + "/appreviews/"):
            reply = self.reviews[url.rsplit("/", 1)[1]]
        else:
            raise AssertionError(f"unexpected url {url}")
        return FakeResponse(reply)

    def searches(self) -> List[Dict[str, str]]:
        return [params for url, params in self.calls if url == SEARCH_URL]


def scripted(*terms):
    """A `choice` replacement that hands out the given terms in order, forever."""
    it = itertools.cycle(terms)
    return lambda words: next(it)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def sleeps():
    recorded: List[float] = []

    async def fake_sleep(seconds):
        recorded.append(seconds)

    fake_sleep.recorded = recorded
    return fake_sleep
