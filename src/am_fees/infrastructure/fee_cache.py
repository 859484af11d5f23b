"""Redis cache of running fee totals, one hash per currency.

    am:fees:currencies          SET of currencies seen
    am:fees:{currency}          HASH listing_fees / marketplace_cuts / entries
    am:fees:entry_ids           SET of fee entry ids already counted

The cache is a convenience for dashboards. It is only ever incremented after
the settlement transaction commits, and FeeAccount.verify() compares it with
totals recomputed from fee_ledger_entries.

An entry is counted at most once: add() records its id and increments in one
Lua script, and replace() rewrites the totals together with the id set they
were computed from. A late add() for an entry a repair already counted is a
no-op.
"""

import redis.asyncio as aioredis

from src.am_fees.domain.fee import FeeLedgerEntry, FeeTotals

_CURRENCIES_KEY = "am:fees:currencies"
_ENTRY_IDS_KEY = "am:fees:entry_ids"

# KEYS: entry ids, currencies, totals hash. ARGV: entry id, currency, listing fee, cut
_ADD_ENTRY_LUA = """
if redis.call('SADD', KEYS[1], ARGV[1]) == 0 then
    return 0
end
redis.call('SADD', KEYS[2], ARGV[2])
redis.call('HINCRBY', KEYS[3], 'listing_fees', ARGV[3])
redis.call('HINCRBY', KEYS[3], 'marketplace_cuts', ARGV[4])
redis.call('HINCRBY', KEYS[3], 'entries', 1)
return 1
"""

_ID_BATCH = 1000


def _totals_key(currency: str) -> str:
    return f"am:fees:{currency}"


class FeeTotalsCache:
    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis
        self._add_entry = redis.register_script(_ADD_ENTRY_LUA)

    async def add(self, entry: FeeLedgerEntry) -> bool:
        """Count `entry` once. Returns False when it was already counted."""
        added = await self._add_entry(
            keys=[_ENTRY_IDS_KEY, _CURRENCIES_KEY, _totals_key(entry.currency)],
            args=[
                entry.id,
                entry.currency,
                entry.listing_fee_amount,
                entry.marketplace_cut_amount,
            ],
        )
        return bool(added)

    async def get_totals(self) -> dict[str, FeeTotals]:
        totals: dict[str, FeeTotals] = {}
        for currency in sorted(await self._redis.smembers(_CURRENCIES_KEY)):
            raw = await self._redis.hgetall(_totals_key(currency))
            totals[currency] = FeeTotals(
                currency=currency,
                listing_fees=int(raw.get("listing_fees", 0)),
                marketplace_cuts=int(raw.get("marketplace_cuts", 0)),
                entries=int(raw.get("entries", 0)),
            )
        return totals

    async def replace(self, totals: dict[str, FeeTotals], entry_ids: set[str]) -> None:
        """Overwrite the cache with authoritative totals and the entries they cover."""
        old = await self._redis.smembers(_CURRENCIES_KEY)
        ids = sorted(entry_ids)
        async with self._redis.pipeline(transaction=True) as pipe:
            for currency in old:
                pipe.delete(_totals_key(currency))
            pipe.delete(_CURRENCIES_KEY, _ENTRY_IDS_KEY)
            for start in range(0, len(ids), _ID_BATCH):
                pipe.sadd(_ENTRY_IDS_KEY, *ids[start:start + _ID_BATCH])
            for currency, t in totals.items():
                pipe.sadd(_CURRENCIES_KEY, currency)
                pipe.hset(
                    _totals_key(currency),
                    mapping={
                        "listing_fees": t.listing_fees,
                        "marketplace_cuts": t.marketplace_cuts,
                        "entries": t.entries,
                    },
                )
            await pipe.execute()
