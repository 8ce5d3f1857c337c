"""Tests for the stored records."""

from db.models import Author, DuplicateGroup, PostReference
from source import Attachment, Message


def test_upload_date_is_utc():
    ref = PostReference(id="1", url="u", author=Author("1", "a"), timestamp=1_704_067_199_000, location="x")
    assert ref.upload_date == "2023-12-31"


def test_scored_rounds_and_copies():
    ref = PostReference(id="1", url="u", author=Author("1", "a"), timestamp=0, location="x")
    scored = ref.scored(3, 12.3456)
    assert (scored.hamming, scored.pixel_difference) == (3, 12.35)
    assert ref.hamming is None
    assert ref.scored(0, None).pixel_difference is None


def test_group_members():
    a = PostReference(id="1", url="u1", author=Author("1", "a"), timestamp=0, location="x")
    b = PostReference(id="2", url="u2", author=Author("2", "b"), timestamp=0, location="x")
    group = DuplicateGroup(group_id=1, fingerprint="ff", original=a, duplicates=[b])
    assert group.members == [a, b]
    assert group.to_dict()["pixelData"] is None


def test_message_to_post_reference():
    attachment = Attachment(url="https://cdn.example.com/a.png", content_type="image/png", size=10, filename="a.png")
    message = Message(id=99, author_id="7", author_name="alice", created_at=5, url="https://discord.com/channels/1/2/99", attachments=[attachment])
    ref = message.post_reference("thread-art", attachment)
    assert ref.id == "99"
    assert ref.author == Author(id="7", username="alice")
    assert ref.location == "thread-art"
    assert (ref.attachment_url, ref.filename) == ("https://cdn.example.com/a.png", "a.png")
