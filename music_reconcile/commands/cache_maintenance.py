from __future__ import annotations

from ..cache import DAY_SECONDS, MetadataCache


def run(cache: MetadataCache, action: str, *, ttl_days: int = 30) -> None:
    if action == "stats":
        stats = cache.stats()
        print(f"Cached responses: {stats['total']}")
        for query_type, count in stats["by_type"].items():
            print(f"  {query_type}: {count}")
        print(f"Recorded moves: {len(cache.list_moves())}")
    elif action == "prune":
        removed = cache.clear_expired(ttl_days * DAY_SECONDS)
        print(f"Removed {removed} expired cache entries (older than {ttl_days} days).")
    elif action == "clear":
        removed = cache.clear()
        print(f"Cleared {removed} cached response(s).")
    else:
        raise ValueError(f"Unknown cache action: {action}")
