"""Tests for the in-memory similarity index."""

import pytest

from db.index import SimilarityIndex
from db.models import Author, DuplicateGroup, PostReference


def post(post_id: str, author: str = "alice", timestamp: int = 0, location: str = "channel-art") -> PostReference:
    return PostReference(
        id=post_id,
        url=f"https://discord.com/channels/1/2/{post_id}",
        author=Author(id=f"id-{author}", username=author),
        timestamp=timestamp,
        location=location,
    )


FP = "8f00ff0012345670"
FP_NEAR = "8f00ff0012345672"  # one bit away
FP_FAR = "70ff00ffedcba980"


class TestExactIndex:
    def test_first_seen_wins_regardless_of_timestamp(self):
        index = SimilarityIndex()
        postings = [post("1", timestamp=500), post("2", timestamp=100), post("3", timestamp=900)]
        for p in postings:
            match = index.find(FP)
            if match is None:
                index.insert(FP, None, p)
            else:
                index.record_duplicate(match.group, p)

        assert len(index) == 1
        group = index.lookup_exact(FP)
        assert group.original.id == "1"
        assert [d.id for d in group.duplicates] == ["2", "3"]

    def test_group_ids_are_sequential(self):
        index = SimilarityIndex()
        first = index.insert(FP, None, post("1"))
        second = index.insert(FP_FAR, None, post("2"))
        assert (first.group_id, second.group_id) == (1, 2)

    def test_group_ids_continue_after_loaded_groups(self):
        existing = DuplicateGroup(group_id=7, fingerprint=FP, original=post("1"))
        index = SimilarityIndex([existing])
        assert index.insert(FP_FAR, None, post("2")).group_id == 8

    def test_duplicate_group_id_rejected(self):
        groups = [DuplicateGroup(group_id=1, fingerprint=FP, original=post("1")),
                  DuplicateGroup(group_id=1, fingerprint=FP_FAR, original=post("2"))]
        with pytest.raises(ValueError):
            SimilarityIndex(groups)

    def test_exact_lookup_ignores_near_fingerprints(self):
        index = SimilarityIndex()
        index.insert(FP, None, post("1"))
        assert index.find(FP_NEAR) is None
        assert index.find(FP.upper()).distance == 0

    def test_short_hex_matches_padded(self):
        index = SimilarityIndex()
        index.insert("00000000000000ff", None, post("1"))
        assert "ff" in index
        assert index.lookup_exact("ff") is not None

    def test_iteration_order_and_counts(self):
        index = SimilarityIndex()
        a = index.insert(FP, None, post("1"))
        b = index.insert(FP_FAR, None, post("2"))
        index.record_duplicate(b, post("3"))
        assert list(index) == [a, b]
        assert index.duplicate_groups() == [b]
        assert index.duplicate_count == 1


class TestStrictIndex:
    def make(self) -> SimilarityIndex:
        index = SimilarityIndex(match_mode="strict", hamming_threshold=2, pixel_threshold=15.0)
        index.insert(FP, bytes([100] * 1024), post("1"))
        return index

    def test_near_match_with_close_pixels(self):
        match = self.make().find(FP_NEAR, bytes([105] * 1024))
        assert match is not None
        assert match.distance == 1
        assert match.pixel_difference == pytest.approx(5.0)

    def test_lookup_near_returns_group(self):
        index = self.make()
        assert index.lookup_near(FP_NEAR, bytes([100] * 1024), 2, 15.0).original.id == "1"
        assert index.lookup_near(FP_NEAR, bytes([100] * 1024), 0, 15.0) is None

    def test_hamming_hit_with_pixel_mismatch_is_not_merged(self):
        index = self.make()
        assert index.find(FP_NEAR, bytes([200] * 1024)) is None
        # same fingerprint, different pixels: still a new group
        assert index.find(FP, bytes([200] * 1024)) is None
        index.insert(FP, bytes([200] * 1024), post("2"))
        assert len(index) == 2

    def test_far_fingerprint_is_not_merged(self):
        assert self.make().find(FP_FAR, bytes([100] * 1024)) is None

    def test_missing_digest_never_matches(self):
        assert self.make().find(FP, None) is None

    def test_threshold_is_inclusive(self):
        index = self.make()
        two_bits = "8f00ff0012345676"
        assert index.nearest(two_bits, bytes([115] * 1024), 2, 15.0) is not None
        assert index.nearest(two_bits, bytes([115] * 1024), 1, 15.0) is None

    def test_first_matching_group_in_insertion_order(self):
        index = self.make()
        index.insert(FP_NEAR, bytes([100] * 1024), post("2"))
        assert index.find(FP_NEAR, bytes([100] * 1024)).group.original.id == "1"
