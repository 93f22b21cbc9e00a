from __future__ import annotations

from storefront.constants import CITIES, PREFERENCE_TTL, SECTORS, WELCOME_VERSION
from storefront.storage.local_store import LocalStore, StoredValue


class VisitorPreferences:
    """Welcome screen state and delivery area; forgotten after PREFERENCE_TTL."""

    def __init__(self, store: LocalStore) -> None:
        self._seen = StoredValue(store, f"seenWelcome_{WELCOME_VERSION}", False, ttl=PREFERENCE_TTL)
        self._city = StoredValue(store, "customerCity", CITIES[0], ttl=PREFERENCE_TTL)
        self._sector = StoredValue(store, "customerSector", SECTORS[0], ttl=PREFERENCE_TTL)

    @property
    def seen_welcome(self) -> bool:
        return bool(self._seen.value)

    @property
    def city(self) -> str:
        return self._city.value

    @property
    def sector(self) -> str:
        return self._sector.value

    def dismiss_welcome(self, city: str, sector: str) -> None:
        if city in CITIES:
            self._city.set(city)
        if sector in SECTORS:
            self._sector.set(sector)
        self._seen.set(True)

    def close(self) -> None:
        for v in (self._seen, self._city, self._sector):
            v.close()
