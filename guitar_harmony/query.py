"""
Guitar Harmony - Song query layer

Turns the song list filters coming in over HTTP into a store call: a
non-blank search text runs a search, anything else lists.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from guitar_harmony.songs import SongStore


@dataclass(frozen=True)
class SongQuery:
    q: Optional[str] = None
    readiness: Optional[str] = None
    sort: Optional[str] = None
    exclude_archived: bool = False

    @property
    def is_search(self) -> bool:
        return bool(self.q and self.q.strip())


async def run_song_query(store: SongStore, query: SongQuery) -> List[Dict[str, Any]]:
    # Search results are always newest-updated first, sort only applies to listing
    if query.is_search:
        return await store.search(
            query.q, readiness=query.readiness, exclude_archived=query.exclude_archived
        )
    return await store.list(
        readiness=query.readiness, sort=query.sort, exclude_archived=query.exclude_archived
    )
