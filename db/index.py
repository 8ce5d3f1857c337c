import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator

from db.models import DuplicateGroup, PostReference
from utils.hashing import hamming_distance, normalize_hex, pixel_difference

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    group: DuplicateGroup
    distance: int
    pixel_difference: float | None = None


class SimilarityIndex:
    """
    Duplicate groups for one channel, in insertion order.

    Exact lookups go through a fingerprint dict. In strict mode two groups can
    share a fingerprint (same coarse hash, different pixels), so groups are
    stored by group id and the dict only points at the first one.

    Callers that may run concurrently must hold ``lock`` around a lookup and
    the insert/record that follows it.
    """

    def __init__(
        self,
        groups: Iterable[DuplicateGroup] = (),
        match_mode: str = "exact",
        hamming_threshold: int = 2,
        pixel_threshold: float = 15.0,
    ):
        self._groups: dict[int, DuplicateGroup] = {}
        self._by_fingerprint: dict[str, DuplicateGroup] = {}
        self.match_mode = match_mode
        self.hamming_threshold = hamming_threshold
        self.pixel_threshold = pixel_threshold
        self.lock = asyncio.Lock()
        self._next_group_id = 1
        for group in groups:
            self._add(group)

    def __len__(self) -> int:
        return len(self._groups)

    def __iter__(self) -> Iterator[DuplicateGroup]:
        return iter(list(self._groups.values()))

    def __contains__(self, fingerprint: str) -> bool:
        return normalize_hex(str(fingerprint)) in self._by_fingerprint

    @property
    def duplicate_count(self) -> int:
        return sum(len(group.duplicates) for group in self._groups.values())

    def duplicate_groups(self) -> list[DuplicateGroup]:
        return [group for group in self._groups.values() if group.duplicates]

    def _add(self, group: DuplicateGroup) -> None:
        if group.group_id in self._groups:
            raise ValueError(f"group id {group.group_id} is already in the index")
        group.fingerprint = normalize_hex(group.fingerprint)
        self._groups[group.group_id] = group
        self._by_fingerprint.setdefault(group.fingerprint, group)
        self._next_group_id = max(self._next_group_id, group.group_id + 1)

    def lookup_exact(self, fingerprint: str) -> DuplicateGroup | None:
        return self._by_fingerprint.get(normalize_hex(str(fingerprint)))

    def nearest(self, fingerprint: str, pixel_digest: bytes | None, max_hamming: int, max_pixel_diff: float) -> Match | None:
        """
        First group, in insertion order, within max_hamming bits whose stored
        pixel grid is also within max_pixel_diff. A hamming hit alone is not
        a match.
        """
        fingerprint = str(fingerprint)
        for group in self._groups.values():
            distance = hamming_distance(group.fingerprint, fingerprint)
            if distance > max_hamming:
                continue
            diff = pixel_difference(group.pixel_digest, pixel_digest)
            if diff <= max_pixel_diff:
                return Match(group=group, distance=distance, pixel_difference=diff)
            LOGGER.debug(f"Group {group.group_id} is {distance} bits away but pixel difference is {diff:.2f}")
        return None

    def lookup_near(self, fingerprint: str, pixel_digest: bytes | None, max_hamming: int, max_pixel_diff: float) -> DuplicateGroup | None:
        match = self.nearest(fingerprint, pixel_digest, max_hamming, max_pixel_diff)
        return match.group if match else None

    def find(self, fingerprint: str, pixel_digest: bytes | None = None) -> Match | None:
        """Lookup using the index's configured match mode."""
        if self.match_mode == "strict":
            return self.nearest(fingerprint, pixel_digest, self.hamming_threshold, self.pixel_threshold)
        group = self.lookup_exact(fingerprint)
        if group is None:
            return None
        return Match(group=group, distance=0)

    def insert(self, fingerprint: str, pixel_digest: bytes | None, post: PostReference) -> DuplicateGroup:
        group = DuplicateGroup(
            group_id=self._next_group_id,
            fingerprint=str(fingerprint),
            original=post,
            pixel_digest=pixel_digest,
        )
        self._add(group)
        LOGGER.debug(f"New group {group.group_id} for {group.fingerprint} from {post.url}")
        return group

    def record_duplicate(self, group: DuplicateGroup, post: PostReference) -> DuplicateGroup:
        group.duplicates.append(post)
        LOGGER.debug(f"Group {group.group_id} now has {len(group.duplicates)} duplicates")
        return group
