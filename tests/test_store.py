"""Tests for hash table persistence."""

import asyncio
import json

import pytest

import exception
from db.index import SimilarityIndex
from db.models import Author, PostReference
from db.store import HashTableStore, dumps, loads


def post(post_id: str, author: str = "alice", **kwargs) -> PostReference:
    return PostReference(
        id=post_id,
        url=f"https://discord.com/channels/1/2/{post_id}",
        author=Author(id=f"id-{author}", username=author),
        timestamp=1_700_000_000_000 + int(post_id),
        location="forum-post-Sketches",
        attachment_url=f"https://cdn.example.com/{post_id}.png",
        filename=f"{post_id}.png",
        **kwargs,
    )


@pytest.fixture
def populated() -> SimilarityIndex:
    index = SimilarityIndex(match_mode="strict")
    a = index.insert("8f00ff0012345670", bytes(range(256)) * 4, post("1"))
    index.record_duplicate(a, post("2", author="bob").scored(1, 3.14159))
    index.record_duplicate(a, post("3", author="álvaro").scored(0, 0.0))
    index.insert("0000000000000000", None, post("4"))
    # strict mode collision on the same fingerprint
    index.insert("8f00ff0012345670", bytes([0] * 1024), post("5"))
    return index


class TestSerialization:
    def test_round_trip_is_byte_identical(self, populated):
        first = dumps(populated)
        second = dumps(SimilarityIndex(loads(first), match_mode="strict"))
        assert first == second

    def test_fields_survive(self, populated):
        groups = loads(dumps(populated))
        first = groups[0]
        assert first.group_id == 1
        assert first.pixel_digest == bytes(range(256)) * 4
        assert first.original == populated.lookup_exact("8f00ff0012345670").original
        assert [d.author.username for d in first.duplicates] == ["bob", "álvaro"]
        assert first.duplicates[0].hamming == 1
        assert first.duplicates[0].pixel_difference == 3.14
        assert groups[1].pixel_digest is None

    def test_collisions_keep_both_groups(self, populated):
        table = json.loads(dumps(populated))
        assert "8f00ff0012345670" in table
        assert "8f00ff0012345670-3" in table
        groups = loads(dumps(populated))
        assert [g.fingerprint for g in groups if g.group_id == 3] == ["8f00ff0012345670"]

    def test_legacy_table_is_numbered(self):
        legacy = {
            "00000000000000ff": {
                "originalMessage": {
                    "id": "10",
                    "url": "https://discord.com/channels/1/2/10",
                    "author": {"username": "alice", "id": "11"},
                    "timestamp": 1700000000000,
                    "channelId": "2",
                },
                "duplicates": [],
            },
            "0000000000000f00": {
                "originalMessage": {
                    "id": "12",
                    "url": "https://discord.com/channels/1/2/12",
                    "author": {"username": "bob", "id": "13"},
                    "timestamp": 1700000000001,
                    "channelId": "2",
                },
                "duplicates": [],
            },
        }
        groups = loads(json.dumps(legacy))
        assert [g.group_id for g in groups] == [1, 2]
        assert groups[0].original.location == "channel-2"
        assert groups[0].original.attachment_url is None

    def test_not_an_object(self):
        with pytest.raises(ValueError):
            loads("[]")


class TestHashTableStore:
    def test_save_and_load(self, tmp_path, populated):
        store = HashTableStore(tmp_path / "tables")
        assert store.save(42, populated)
        assert store.path_for(42).name == "hashtable_42.json"
        loaded = store.load(42, match_mode="strict")
        assert len(loaded) == len(populated)
        assert loaded.match_mode == "strict"
        assert dumps(loaded) == dumps(populated)

    def test_missing_table_is_empty(self, tmp_path):
        assert len(HashTableStore(tmp_path).load(1)) == 0

    def test_corrupt_table_degrades_to_empty(self, tmp_path):
        store = HashTableStore(tmp_path)
        store.path_for(1).write_text("{not json", encoding="utf-8")
        with pytest.raises(exception.PersistenceError):
            store.read(1)
        assert len(store.load(1)) == 0

    def test_record_missing_fields(self, tmp_path):
        store = HashTableStore(tmp_path)
        store.path_for(1).write_text(json.dumps({"ff": {"duplicates": []}}), encoding="utf-8")
        with pytest.raises(exception.PersistenceError):
            store.read(1)

    @pytest.mark.parametrize("key", ["not-hex", "", "0x00ff", "00 ff"])
    def test_non_hex_key_degrades_to_empty(self, tmp_path, populated, key):
        table = json.loads(dumps(populated))
        table[key] = table.pop("0000000000000000")
        store = HashTableStore(tmp_path)
        store.path_for(1).write_text(json.dumps(table), encoding="utf-8")
        with pytest.raises(exception.PersistenceError):
            store.read(1)

        loaded = store.load(1, match_mode="strict")
        assert len(loaded) == 0
        assert loaded.find("8f00ff0012345670", bytes(1024)) is None

    def test_save_async_waits_for_index_lock(self, tmp_path, populated):
        store = HashTableStore(tmp_path)

        async def save_while_scanning():
            await populated.lock.acquire()
            save = asyncio.create_task(store.save_async(1, populated))
            await asyncio.sleep(0)
            assert not save.done()
            populated.insert("00000000000000aa", None, post("9"))
            populated.lock.release()
            return await save

        assert asyncio.run(save_while_scanning())
        assert len(store.load(1, match_mode="strict")) == len(populated) == 4

    def test_save_failure_is_reported(self, tmp_path, populated):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = HashTableStore(blocker)
        assert store.save(1, populated) is False
        with pytest.raises(exception.PersistenceError):
            store.write(1, populated)
