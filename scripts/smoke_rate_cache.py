"""Smoke script for the rate resolution cache.

Demonstrates:
 1. First resolve goes to the store; repeats within TTL are cache hits.
 2. Creating a rate drops the organization's cached resolutions.
 3. Historical lookups never touch the cache.
 4. Entries expire once the TTL has passed (clock advanced by hand).

NOTE: This is a lightweight diagnostic and not a formal test.
"""

import os
import tempfile
from datetime import date, timedelta
from pprint import pprint

from payroll_fx.core.config import Settings
from payroll_fx.db.dal import Database
from payroll_fx.db.migrate import apply_migrations
from payroll_fx.services.currency_service import CurrencyService
from payroll_fx.services.rates.cache_service import InMemoryRateCache

ORG = "smoke-org"


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def run():
    with tempfile.TemporaryDirectory() as d:
        settings = Settings(db_path=os.path.join(d, "smoke.db"))
        settings.init_post_load()
        apply_migrations(settings.db_path)
        clock = ManualClock()
        cache = InMemoryRateCache(settings.rates_cache_ttl_seconds, clock=clock)
        svc = CurrencyService(Database(settings.db_path), settings, cache=cache)
        out = {}
        month_ago = date.today() - timedelta(days=30)

        svc.create_exchange_rate(ORG, "USD", "SRD", "21.5", effective_from=month_ago)
        svc.create_exchange_rate(ORG, "SRD", "EUR", "0.047", effective_from=month_ago)

        for pair in (("USD", "SRD"), ("SRD", "USD"), ("USD", "EUR")):
            svc.get_exchange_rate(ORG, *pair)
            svc.get_exchange_rate(ORG, *pair)
        out["after_repeats"] = svc.get_cache_stats()

        svc.create_exchange_rate(ORG, "USD", "SRD", "22", effective_from=date.today())
        out["after_create"] = svc.get_cache_stats()

        svc.get_exchange_rate(ORG, "USD", "SRD", date.today() - timedelta(days=1))
        out["after_historical"] = svc.get_cache_stats()

        svc.get_exchange_rate(ORG, "USD", "EUR")
        clock.now += settings.rates_cache_ttl_seconds + 1
        out["after_expiry"] = svc.get_cache_stats()
        out["usd_eur"] = str(svc.get_exchange_rate(ORG, "USD", "EUR").rate)

        pprint(out)


if __name__ == "__main__":
    run()
