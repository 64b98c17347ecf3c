"""
Background refresh for display-only data: live prices and ticker suggestions.

Both are fire-and-forget remote lookups. Every lookup takes a number from a
RequestSequencer and its result is applied only if no newer lookup has been
issued since.
"""
import logging
import threading
from typing import Callable, Optional

from swingjournal.models.assistant import TickerSuggestion

logger = logging.getLogger("swingjournal.refresh")

PriceFetcher = Callable[[list[str]], dict[str, Optional[float]]]
SuggestionFetcher = Callable[[str], list[TickerSuggestion]]


class RequestSequencer:
    """Monotonic request counter with a last-request-wins gate."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest = 0

    def issue(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    @property
    def latest(self) -> int:
        return self._latest

    def apply_if_latest(self, seq: int, apply: Callable[[], None]) -> bool:
        with self._lock:
            if seq != self._latest:
                return False
            apply()
            return True


class Debouncer:
    """Run `fn` once input has been quiet for `delay` seconds."""

    def __init__(self, delay: float, fn: Callable[..., None]):
        self.delay = delay
        self.fn = fn
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def trigger(self, *args) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.fn, args=args)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class PricePoller:
    """Re-fetches live prices for the current open tickers on a fixed interval."""

    def __init__(self, fetch: PriceFetcher, tickers: Callable[[], list[str]], interval: float = 60.0):
        self._fetch = fetch
        self._tickers = tickers
        self.interval = interval
        self._sequencer = RequestSequencer()
        self._prices: dict[str, Optional[float]] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.fetching = False

    @property
    def prices(self) -> dict[str, Optional[float]]:
        return dict(self._prices)

    def refresh_now(self) -> bool:
        """Fetch once on the calling thread. Returns False if the result was stale."""
        tickers = sorted(set(self._tickers()))
        seq = self._sequencer.issue()
        if not tickers:
            return self._sequencer.apply_if_latest(seq, lambda: self._replace({}))

        self.fetching = True
        try:
            result = self._fetch(tickers)
        finally:
            self.fetching = False

        applied = self._sequencer.apply_if_latest(seq, lambda: self._replace(result))
        if not applied:
            logger.debug("Discarded stale price response #%d", seq)
        return applied

    def _replace(self, prices: dict[str, Optional[float]]) -> None:
        self._prices = dict(prices)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.refresh_now()
            except Exception as e:
                logger.error("Live price refresh failed: %s", e)
            self._stop_event.wait(self.interval)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="price-poller", daemon=True)
        self._thread.start()
        logger.info("Price polling started (every %ss)", self.interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())


def wants_suggestions(term: str) -> bool:
    """Only multi-word input looks like a company name; a bare word is taken as a ticker."""
    term = term.strip()
    return len(term) >= 2 and " " in term


class TickerSuggestions:
    """Debounced typeahead for the ticker field."""

    def __init__(self, search: SuggestionFetcher, delay: float = 0.3):
        self._search = search
        self._sequencer = RequestSequencer()
        self._debouncer = Debouncer(delay, self._run)
        self._results: list[TickerSuggestion] = []
        self.query = ""
        self.searching = False

    @property
    def results(self) -> list[TickerSuggestion]:
        return list(self._results)

    def on_input(self, text: str) -> None:
        self.query = text
        if not wants_suggestions(text):
            self._debouncer.cancel()
            # Invalidate anything still in flight for the previous text
            seq = self._sequencer.issue()
            self._sequencer.apply_if_latest(seq, lambda: self._set([]))
            return
        self._debouncer.trigger(text.strip())

    def _run(self, term: str) -> None:
        seq = self._sequencer.issue()
        self.searching = True
        try:
            results = self._search(term)
        except Exception as e:
            logger.error("Ticker search failed for %r: %s", term, e)
            results = []
        finally:
            self.searching = False
        self._sequencer.apply_if_latest(seq, lambda: self._set(results))

    def _set(self, results: list[TickerSuggestion]) -> None:
        self._results = list(results)

    def close(self) -> None:
        self._debouncer.cancel()
