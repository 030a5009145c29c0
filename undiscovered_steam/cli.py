"""
cli.py

Command line front end: asks for the filter settings (flags or interactive
prompts), runs the collector and lets the user open results in a browser.

  undiscovered-steam --max-price 0 --max-reviews 20 --results 25 --platforms windows
"""
import argparse
import asyncio
import math
import os
import sys
import webbrowser
from pathlib import Path
from typing import Callable, List, Optional, TextIO, Tuple

import aiohttp

from .collector import DEFAULT_BACKOFF, Collector, EmptyWordListError, FilterCriteria, TermSource
from .steam import PLATFORMS, App, TransportError

DEFAULT_WORDLIST = Path(__file__).with_name("wordlist.txt")
WORDLIST_ENV = "UNDISCOVERED_STEAM_WORDLIST"

TITLE_SPLASH = r"""
  _   _         _ _                               _
 | | | |_ _  __| (_)___ __ _____ _____ _ _ ___ __| |
 | |_| | ' \/ _` | (_-</ _/ _ \ V / -_) '_/ -_) _` |
  \___/|_||_\__,_|_/__/\__\___/\_/\___|_| \___\__,_|
 / __| |_ ___ __ _ _ __
 \__ \  _/ -_) _` | '  \
 |___/\__\___\__,_|_|_|_|
"""


class SettingsError(ValueError):
    pass


# ----------------- Settings -----------------
def parse_platforms(value: str) -> frozenset:
    names = [p.strip().lower() for p in value.replace(" ", ",").split(",") if p.strip()]
    # accept "macos" as spelled in the store UI
    names = ["mac" if n == "macos" else n for n in names]
    unknown = [n for n in names if n not in PLATFORMS]
    if unknown:
        raise SettingsError(f"unknown platform(s): {', '.join(unknown)} (choose from {', '.join(PLATFORMS)})")
    return frozenset(names)


def _ask(prompt: str, default: str, input_fn: Callable[[str], str]) -> str:
    answer = input_fn(f"{prompt} [{default}]: ").strip()
    return answer or default


def _convert(raw, convert, what: str):
    try:
        return convert(raw)
    except (TypeError, ValueError) as e:
        raise SettingsError(f"invalid {what}: {raw!r}") from e


def resolve_settings(args: argparse.Namespace,
                     input_fn: Callable[[str], str] = input) -> Tuple[FilterCriteria, int]:
    """Fill in everything not given on the command line by prompting for it."""
    max_price = args.max_price
    if max_price is None:
        max_price = _convert(_ask("Max Price", "0", input_fn), float, "max price")
    max_reviews = args.max_reviews
    if max_reviews is None:
        max_reviews = _convert(_ask("Max Reviews", "20", input_fn), int, "max reviews")
    results = args.results
    if results is None:
        results = _convert(_ask("Results", "25", input_fn), int, "results count")
    platforms = args.platforms
    if platforms is None:
        platforms = _ask(f"Supported Platforms ({', '.join(PLATFORMS)})", "windows", input_fn)

    if not math.isfinite(max_price):
        raise SettingsError(f"invalid max price: {max_price!r}")
    if max_price < 0:
        raise SettingsError("max price must not be negative")
    if max_reviews < 0:
        raise SettingsError("max reviews must not be negative")
    if results < 1:
        raise SettingsError("results must be at least 1")

    criteria = FilterCriteria(max_price=float(max_price), max_reviews=int(max_reviews),
                              required_platforms=parse_platforms(platforms))
    return criteria, int(results)


def resolve_wordlist(args: argparse.Namespace) -> Path:
    return Path(args.wordlist or os.environ.get(WORDLIST_ENV) or DEFAULT_WORDLIST)


# ----------------- Presentation -----------------
def format_title(app: App) -> str:
    price = "Free" if app.final_price is None else f"${app.final_price:.2f}"
    return f"{app.name} • {price} • {app.reviews.num_reviews} reviews"


class Progress:
    """
    Status lines for the collection loop. On a terminal each line replaces the
    previous one; anywhere else every line is kept.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stdout
        self.live = self.stream.isatty()
        self._pending = False

    def set_title(self, title: str):
        if self.live:
            self.stream.write(f"\x1b]0;{title}\x07")
            self.stream.flush()

    def __call__(self, line: str):
        if self.live:
            self.stream.write(f"\r\x1b[2K{line}")
            self._pending = True
        else:
            self.stream.write(line + "\n")
        self.stream.flush()

    def finish(self):
        if self._pending:
            self.stream.write("\n")
            self.stream.flush()
            self._pending = False


def choose_and_open(apps: List[App], input_fn: Callable[[str], str] = input,
                    opener: Callable[[str], object] = webbrowser.open) -> int:
    """Show the results as a menu until the user quits. Returns how many pages were opened."""
    opened = 0
    titles = [format_title(a) for a in apps]
    while True:
        print()
        for i, title in enumerate(titles, start=1):
            print(f"  {i:>3}. {title}")
        try:
            answer = input_fn("Select a game (number, blank to quit): ").strip().lower()
        except EOFError:
            break
        if answer in ("", "q", "quit"):
            break
        try:
            n = int(answer)
        except ValueError:
            print(f"Not a number: {answer!r}")
            continue
        if not 1 <= n <= len(apps):
            print(f"Choose between 1 and {len(apps)}")
            continue
        opener(apps[n - 1].store_url)
        opened += 1
    return opened


# ----------------- CLI -----------------
def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Find little-known games on Steam by searching random words")
    p.add_argument("--max-price", type=float, help="price ceiling in dollars, 0 for free games only")
    p.add_argument("--max-reviews", type=int, help="skip games with more reviews than this")
    p.add_argument("--results", "-n", type=int, help="how many games to collect")
    p.add_argument("--platforms", help=f"comma separated required platforms ({', '.join(PLATFORMS)})")
    p.add_argument("--wordlist", help=f"file with search words, one per line (or set {WORDLIST_ENV})")
    p.add_argument("--timeout", type=int, default=30, help="per-request timeout (seconds)")
    p.add_argument("--concurrency", "-c", type=int, default=20, help="max simultaneous connections")
    p.add_argument("--backoff", type=float, default=DEFAULT_BACKOFF,
                   help=f"seconds to sleep when Steam rate limits us. Default {DEFAULT_BACKOFF:g}")
    p.add_argument("--no-open", action="store_true", help="print store URLs instead of opening a browser")
    return p.parse_args(argv)


async def collect(args: argparse.Namespace, criteria: FilterCriteria, quota: int,
                  term_source: TermSource) -> List[App]:
    conn = aiohttp.TCPConnector(limit=args.concurrency, ttl_dns_cache=300)
    client_timeout = aiohttp.ClientTimeout(total=args.timeout)
    progress = Progress()
    async with aiohttp.ClientSession(connector=conn, timeout=client_timeout) as session:
        collector = Collector(session, term_source, criteria, quota, backoff=args.backoff, report=progress)
        try:
            return await collector.run()
        finally:
            progress.finish()


async def main_async(args: argparse.Namespace, input_fn: Callable[[str], str] = input) -> int:
    Progress().set_title("Undiscovered Steam")
    print(TITLE_SPLASH[1:])

    wordlist = resolve_wordlist(args)
    try:
        term_source = TermSource.from_file(wordlist)
    except FileNotFoundError:
        print("Word list not found:", wordlist)
        return 2
    except EmptyWordListError:
        print("Word list is empty:", wordlist)
        return 2

    try:
        criteria, quota = resolve_settings(args, input_fn)
    except SettingsError as e:
        print(f"Error: {e}")
        return 2

    try:
        games = await collect(args, criteria, quota, term_source)
    except TransportError as e:
        print(f"Could not reach the Steam store: {e}")
        return 1

    print(f"Collected {len(games)} games")
    opener = print if args.no_open else webbrowser.open
    choose_and_open(games, input_fn, opener)
    return 0


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    try:
        rc = asyncio.run(main_async(args))
        raise SystemExit(rc or 0)
    except (KeyboardInterrupt, EOFError):
        print("Interrupted by user")
        raise SystemExit(1)
