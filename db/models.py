import base64
import datetime
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class Author:
    id: str
    username: str


@dataclass(frozen=True)
class PostReference:
    """One observed posting of an image."""
    id: str
    url: str
    author: Author
    timestamp: int  # epoch milliseconds
    location: str
    attachment_url: str | None = None
    filename: str | None = None
    # Only set on duplicates, measured against the group representative
    hamming: int | None = None
    pixel_difference: float | None = None

    @property
    def upload_date(self) -> str:
        created = datetime.datetime.fromtimestamp(self.timestamp / 1000, tz=datetime.timezone.utc)
        return created.strftime("%Y-%m-%d")

    def scored(self, hamming: int, pixel_difference: float | None) -> "PostReference":
        if pixel_difference is not None:
            pixel_difference = round(pixel_difference, 2)
        return replace(self, hamming=hamming, pixel_difference=pixel_difference)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "author": {"username": self.author.username, "id": self.author.id},
            "timestamp": self.timestamp,
            "location": self.location,
            "attachment": {"url": self.attachment_url, "name": self.filename},
            "similarityScore": self.hamming,
            "pixelDifference": self.pixel_difference,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PostReference":
        author = data.get("author") or {}
        attachment = data.get("attachment") or {}
        # Older tables stored the channel id where newer ones store a location label
        location = data.get("location")
        if location is None:
            location = f"channel-{data['channelId']}" if data.get("channelId") else ""
        return cls(
            id=str(data["id"]),
            url=data.get("url", ""),
            author=Author(id=str(author.get("id", "")), username=author.get("username", "")),
            timestamp=int(data.get("timestamp") or 0),
            location=location,
            attachment_url=attachment.get("url"),
            filename=attachment.get("name"),
            hamming=data.get("similarityScore"),
            pixel_difference=data.get("pixelDifference"),
        )


@dataclass
class DuplicateGroup:
    """An original posting plus every repost matched to it.

    ``original`` is fixed when the group is created and ``duplicates`` only
    ever grows, in arrival order.
    """
    group_id: int
    fingerprint: str
    original: PostReference
    duplicates: list[PostReference] = field(default_factory=list)
    pixel_digest: bytes | None = None

    @property
    def members(self) -> list[PostReference]:
        return [self.original, *self.duplicates]

    def to_dict(self) -> dict:
        digest = None
        if self.pixel_digest is not None:
            digest = base64.b64encode(self.pixel_digest).decode("ascii")
        return {
            "groupId": self.group_id,
            "originalMessage": self.original.to_dict(),
            "duplicates": [dupe.to_dict() for dupe in self.duplicates],
            "pixelData": digest,
        }

    @classmethod
    def from_dict(cls, fingerprint: str, data: dict, group_id: int) -> "DuplicateGroup":
        digest = data.get("pixelData")
        return cls(
            group_id=group_id,
            fingerprint=fingerprint,
            original=PostReference.from_dict(data["originalMessage"]),
            duplicates=[PostReference.from_dict(dupe) for dupe in data.get("duplicates", [])],
            pixel_digest=base64.b64decode(digest) if digest else None,
        )
