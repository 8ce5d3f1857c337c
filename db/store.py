import asyncio
import json
import logging
import os
import string
from pathlib import Path

import exception
from db.index import SimilarityIndex
from db.models import DuplicateGroup

LOGGER = logging.getLogger(__name__)


def dumps(groups) -> str:
    """
    Serialize groups as a flat object keyed by fingerprint hex.

    A fingerprint that already has a group (strict mode collisions) is keyed
    as ``<hex>-<groupId>`` so no group is lost.
    """
    table = {}
    for group in groups:
        key = group.fingerprint
        if key in table:
            key = f"{group.fingerprint}-{group.group_id}"
        table[key] = group.to_dict()
    return json.dumps(table, indent=2, ensure_ascii=False)


def loads(text: str) -> list[DuplicateGroup]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("hash table is not a JSON object")
    groups = []
    ids = [record.get("groupId") for record in data.values()]
    next_id = max([gid for gid in ids if isinstance(gid, int)], default=0) + 1
    seen = set()
    for key, record in data.items():
        fingerprint = key.split("-", 1)[0]
        if not fingerprint or not set(fingerprint) <= set(string.hexdigits):
            raise ValueError(f"{key!r} is not a hex fingerprint")
        group_id = record.get("groupId")
        if not isinstance(group_id, int) or group_id in seen:
            # Tables from before group ids existed
            group_id = next_id
            next_id += 1
        seen.add(group_id)
        group = DuplicateGroup.from_dict(fingerprint, record, group_id)
        groups.append(group)
    return groups


class HashTableStore:
    """Per-channel hash tables stored as hashtable_<channel_id>.json."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.logger = logging.getLogger(self.__class__.__name__)

    def path_for(self, channel_id: int | str) -> Path:
        return self.directory / f"hashtable_{channel_id}.json"

    def read(self, channel_id: int | str) -> list[DuplicateGroup]:
        path = self.path_for(channel_id)
        if not path.is_file():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                return loads(f.read())
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise exception.PersistenceError(f"could not load {path}: {exc}") from exc

    def load(self, channel_id: int | str, **index_options) -> SimilarityIndex:
        """Load a channel's table, starting from an empty index if it can't be read."""
        try:
            groups = self.read(channel_id)
        except exception.PersistenceError as exc:
            self.logger.error(f"{exc}, starting from an empty table")
            groups = []
        if groups:
            self.logger.info(f"Loaded {len(groups)} entries from {self.path_for(channel_id)}")
        else:
            self.logger.info(f"No existing hash table for channel {channel_id}")
        return SimilarityIndex(groups, **index_options)

    def write(self, channel_id: int | str, index: SimilarityIndex) -> Path:
        path = self.path_for(channel_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(dumps(index))
            os.replace(tmp_path, path)
        except OSError as exc:
            raise exception.PersistenceError(f"could not save {path}: {exc}") from exc
        return path

    def save(self, channel_id: int | str, index: SimilarityIndex) -> bool:
        """Write a channel's table. Failures are logged and the in-memory index is kept."""
        try:
            path = self.write(channel_id, index)
        except exception.PersistenceError as exc:
            self.logger.error(str(exc))
            return False
        self.logger.info(f"Saved {len(index)} entries to {path}")
        return True

    async def save_async(self, channel_id: int | str, index: SimilarityIndex) -> bool:
        """Write off the event loop. Holds the index lock so no scan mutates it mid-write."""
        async with index.lock:
            return await asyncio.to_thread(self.save, channel_id, index)
