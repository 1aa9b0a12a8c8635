"""Signed relay events and subscription filters."""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Optional

import coincurve


# Event kinds
OFFER_KIND = 21001       # Offer requests and responses
DEBIT_KIND = 21002       # Debit requests and responses
ZAP_REQUEST_KIND = 9734  # Zap request attached to offer requests


def serialize_event(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> bytes:
    """Canonical serialization hashed into the event id."""
    return json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """SHA-256 of the canonical serialization, hex encoded."""
    return hashlib.sha256(
        serialize_event(pubkey, created_at, kind, tags, content)
    ).hexdigest()


@dataclass
class Event:
    """Signed event as published to relays."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]]
    content: str
    sig: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Build an event from its relay wire form.

        Raises:
            ValueError: If a required field is missing or mistyped
        """
        try:
            return cls(
                id=str(data["id"]),
                pubkey=str(data["pubkey"]),
                created_at=int(data["created_at"]),
                kind=int(data["kind"]),
                tags=[[str(v) for v in tag] for tag in data["tags"]],
                content=str(data["content"]),
                sig=str(data["sig"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid event: {e}") from e

    def tag_values(self, name: str) -> list[str]:
        """Values of all tags named `name` (first element after the name)."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def verify(self) -> bool:
        """Check the id matches the content and the signature is valid."""
        expected = compute_event_id(
            self.pubkey, self.created_at, self.kind, self.tags, self.content
        )
        if expected != self.id:
            return False
        try:
            key = coincurve.PublicKeyXOnly(bytes.fromhex(self.pubkey))
            return key.verify(bytes.fromhex(self.sig), bytes.fromhex(self.id))
        except ValueError:
            return False


@dataclass
class Filter:
    """Subscription filter in relay wire form."""

    kinds: list[int] = field(default_factory=list)
    authors: list[str] = field(default_factory=list)
    pubkey_refs: list[str] = field(default_factory=list)  # "#p"
    event_refs: list[str] = field(default_factory=list)   # "#e"
    since: Optional[int] = None
    limit: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.kinds:
            result["kinds"] = list(self.kinds)
        if self.authors:
            result["authors"] = list(self.authors)
        if self.pubkey_refs:
            result["#p"] = list(self.pubkey_refs)
        if self.event_refs:
            result["#e"] = list(self.event_refs)
        if self.since is not None:
            result["since"] = self.since
        if self.limit is not None:
            result["limit"] = self.limit
        return result

    def matches(self, event: Event) -> bool:
        """Re-check an event delivered by a relay against this filter."""
        if self.kinds and event.kind not in self.kinds:
            return False
        if self.authors and event.pubkey not in self.authors:
            return False
        if self.pubkey_refs and not set(self.pubkey_refs) & set(event.tag_values("p")):
            return False
        if self.event_refs and not set(self.event_refs) & set(event.tag_values("e")):
            return False
        if self.since is not None and event.created_at < self.since:
            return False
        return True
