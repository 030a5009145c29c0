"""
collector.py

Random-word discovery loop:
  term -> store search -> concurrent detail/review fetch -> filter -> results
repeated until the requested number of titles passed the filter.

On HTTP 429/403 from the store the loop sleeps for a fixed backoff and carries
on with a fresh term. Nothing else is retried.
"""
import asyncio
import enum
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional, Sequence

import aiohttp

from .steam import (
    PLATFORMS,
    App,
    DecodeError,
    OtherError,
    RateLimited,
    SteamRequestError,
    TransportError,
    extract_appid,
    fetch_app,
    search,
)

DEFAULT_BACKOFF = 5.0


# ----------------- Term source -----------------
class EmptyWordListError(ValueError):
    pass


class TermSource:
    """Uniform random pick from a fixed word list. `choice` is injectable for tests."""

    def __init__(self, words: Iterable[str], choice: Callable[[Sequence[str]], str] = random.choice):
        self.words: List[str] = [w.strip() for w in words if w and w.strip()]
        if not self.words:
            raise EmptyWordListError("word list is empty")
        self._choice = choice

    @classmethod
    def from_file(cls, path, choice: Callable[[Sequence[str]], str] = random.choice) -> "TermSource":
        text = Path(path).read_text(encoding="utf-8")
        return cls(text.splitlines(), choice=choice)

    def next_term(self) -> str:
        return self._choice(self.words)


# ----------------- Filter -----------------
@dataclass(frozen=True)
class FilterCriteria:
    max_price: float = 0.0
    max_reviews: int = 20
    required_platforms: FrozenSet[str] = frozenset({"windows"})

    def __post_init__(self):
        platforms = frozenset(self.required_platforms)
        unknown = platforms - set(PLATFORMS)
        if unknown:
            raise ValueError(f"unknown platform(s): {', '.join(sorted(unknown))}")
        object.__setattr__(self, "required_platforms", platforms)


def passes(app: App, criteria: FilterCriteria) -> bool:
    if app.reviews.total_reviews > criteria.max_reviews:
        return False

    # no price_overview means free, which never exceeds the ceiling
    if app.price is not None and app.price.final_major > criteria.max_price:
        return False

    for platform in PLATFORMS:
        if platform in criteria.required_platforms and not app.platforms.supports(platform):
            return False

    return True


# ----------------- Collection loop -----------------
class LoopState(enum.Enum):
    COLLECTING = "collecting"
    RATE_LIMITED = "rate_limited"
    DONE = "done"


@dataclass
class RoundResult:
    term: str
    matches: int = 0
    appended: int = 0
    rate_limited: bool = False
    errors: List[SteamRequestError] = field(default_factory=list)


class Collector:
    """
    Runs rounds until `quota` titles passed the filter.

    The results list only ever grows; titles found through two different
    terms are kept twice.
    """

    def __init__(self, session: aiohttp.ClientSession, term_source: TermSource, criteria: FilterCriteria,
                 quota: int, backoff: float = DEFAULT_BACKOFF,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 report: Callable[[str], None] = print,
                 should_stop: Optional[Callable[[], bool]] = None):
        if quota < 1:
            raise ValueError("quota must be a positive integer")
        self.session = session
        self.term_source = term_source
        self.criteria = criteria
        self.quota = quota
        self.backoff = backoff
        self._sleep = sleep
        self._report = report
        self._should_stop = should_stop
        self.results: List[App] = []
        self.state = LoopState.COLLECTING
        self.rounds = 0
        self._reached_store = False

    async def run(self) -> List[App]:
        while self.state is not LoopState.DONE:
            if self._should_stop is not None and self._should_stop():
                break
            outcome = await self.collect_round(self.term_source.next_term())
            if outcome.rate_limited:
                await self._back_off()
            if len(self.results) >= self.quota:
                self.state = LoopState.DONE
        return self.results

    async def collect_round(self, term: str) -> RoundResult:
        self.rounds += 1
        outcome = RoundResult(term=term)
        self._report(f"[{len(self.results)}/{self.quota}] • {term}")

        try:
            matches = await search(self.session, self.criteria.max_price, term)
        except RateLimited:
            self._reached_store = True
            outcome.rate_limited = True
            return outcome
        except TransportError as e:
            if e.status is None and not self._reached_store:
                # could not talk to the store even once: nothing to retry against
                raise
            self._reached_store = True
            self._report(f"search for {term!r} failed: {e}")
            outcome.errors.append(e)
            return outcome
        except DecodeError as e:
            self._reached_store = True
            self._report(f"search for {term!r} failed: {e}")
            outcome.errors.append(e)
            return outcome
        self._reached_store = True
        outcome.matches = len(matches)

        appids: List[str] = []
        for match in matches:
            try:
                appids.append(extract_appid(match.logo))
            except DecodeError as e:
                outcome.errors.append(e)

        # gather keeps results in submission order, whatever order they finish in
        responses = await asyncio.gather(*(fetch_app(self.session, aid) for aid in appids),
                                         return_exceptions=True)

        for response in responses:
            if isinstance(response, RateLimited):
                outcome.rate_limited = True
                outcome.errors.append(response)
                continue
            if isinstance(response, SteamRequestError):
                outcome.errors.append(response)
                continue
            if isinstance(response, Exception):
                outcome.errors.append(OtherError(repr(response)))
                continue
            if isinstance(response, BaseException):
                raise response
            if passes(response, self.criteria):
                self.results.append(response)
                outcome.appended += 1
        return outcome

    async def _back_off(self):
        self.state = LoopState.RATE_LIMITED
        self._report(f"Too many Steam requests, sleeping for {self.backoff:g} seconds")
        await self._sleep(self.backoff)
        self.state = LoopState.COLLECTING
