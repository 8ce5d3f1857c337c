"""Tests for picking the hash table a new message is checked against."""

from types import SimpleNamespace

from cogs.tracker import tracked_table_id


def test_tracked_channel_uses_own_table():
    channel = SimpleNamespace(id=10)
    assert tracked_table_id(channel, {10}) == 10


def test_forum_post_uses_forum_table():
    post = SimpleNamespace(id=99, parent_id=10)
    assert tracked_table_id(post, {10}) == 10


def test_untracked_channel_is_ignored():
    assert tracked_table_id(SimpleNamespace(id=11), {10}) is None
    assert tracked_table_id(SimpleNamespace(id=99, parent_id=12), {10}) is None
    assert tracked_table_id(SimpleNamespace(id=99, parent_id=None), {10}) is None
