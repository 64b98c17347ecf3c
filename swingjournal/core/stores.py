"""
Side stores that live next to the ledger but never touch trades:
the user profile, the watchlist and the broker credentials.
"""
import logging
from typing import Optional

from pydantic import ValidationError as ModelValidationError

from swingjournal.database import (
    BROKER_CREDENTIALS_KEY,
    PROFILE_KEY,
    WATCHLIST_KEY,
    KeyValueStorage,
)
from swingjournal.errors import NotFoundError, ValidationError
from swingjournal.models.profile import BrokerCredentials, UserProfile, WatchlistItem

logger = logging.getLogger("swingjournal.stores")


class ProfileStore:
    def __init__(self, storage: KeyValueStorage):
        self._storage = storage
        raw = storage.load(PROFILE_KEY)
        try:
            self._profile = UserProfile.model_validate(raw) if raw else UserProfile()
        except ModelValidationError as e:
            logger.warning("Stored profile unreadable, using default: %s", e)
            self._profile = UserProfile()

    def get(self) -> UserProfile:
        return self._profile.model_copy()

    def save(self, profile: UserProfile) -> UserProfile:
        self._storage.save(PROFILE_KEY, profile.model_dump())
        self._profile = profile.model_copy()
        return self.get()


class Watchlist:
    """Tickers the user tracks but has not traded. Unique by ticker, newest first."""

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage
        raw = storage.load(WATCHLIST_KEY) or []
        self._items = [WatchlistItem.model_validate(item) for item in raw]

    @property
    def items(self) -> list[WatchlistItem]:
        return [i.model_copy() for i in self._items]

    def tickers(self) -> list[str]:
        return [i.ticker for i in self._items]

    def add(self, ticker: str) -> WatchlistItem:
        ticker = (ticker or "").strip().upper()
        if not ticker:
            raise ValidationError("Ticker is required")
        if ticker in self.tickers():
            raise ValidationError(f"{ticker} is already on the watchlist")
        item = WatchlistItem(ticker=ticker)
        self._persist([item] + self._items)
        return item

    def remove(self, item_id: str) -> None:
        remaining = [i for i in self._items if i.id != item_id]
        if len(remaining) == len(self._items):
            raise NotFoundError(f"Watchlist item {item_id} not found")
        self._persist(remaining)

    def _persist(self, items: list[WatchlistItem]) -> None:
        self._storage.save(WATCHLIST_KEY, [i.model_dump() for i in items])
        self._items = items


class BrokerCredentialStore:
    """Plaintext local copy of the broker key pair. Not for production use."""

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    def save(self, creds: BrokerCredentials) -> None:
        self._storage.save(BROKER_CREDENTIALS_KEY, creds.model_dump(by_alias=True))

    def load(self) -> Optional[BrokerCredentials]:
        raw = self._storage.load(BROKER_CREDENTIALS_KEY)
        return BrokerCredentials.model_validate(raw) if raw else None

    def clear(self) -> None:
        self._storage.delete(BROKER_CREDENTIALS_KEY)
