"""Local identity keypair and its on-disk storage."""

import json
import logging
import os
import time
from pathlib import Path
from typing import Optional

import coincurve

from mcp_noffer.encryption import get_conversation_key
from mcp_noffer.event import Event, compute_event_id


logger = logging.getLogger(__name__)

# Key under which the secret is stored
SECRET_KEY_NAME = "nostr_secret"


class Identity:
    """Secret key and derived x-only public key.

    Shared read-only by every exchange issued from one session.
    """

    def __init__(self, secret: bytes):
        self._key = coincurve.PrivateKey(secret)
        self.public_key = self._key.public_key_xonly.format().hex()

    @classmethod
    def generate(cls) -> "Identity":
        return cls(os.urandom(32))

    @classmethod
    def from_hex(cls, secret_hex: str) -> "Identity":
        return cls(bytes.fromhex(secret_hex))

    @property
    def secret(self) -> bytes:
        return self._key.secret

    @property
    def secret_hex(self) -> str:
        return self._key.secret.hex()

    def conversation_key(self, pubkey: str) -> bytes:
        """Shared secret with the owner of `pubkey`."""
        return get_conversation_key(self._key.secret, pubkey)

    def sign_event(
        self,
        kind: int,
        tags: list[list[str]],
        content: str,
        created_at: Optional[int] = None,
    ) -> Event:
        """Build and sign an event authored by this identity.

        Args:
            kind: Event kind
            tags: Event tags
            content: Event content
            created_at: Unix timestamp; now when omitted

        Returns:
            Signed Event
        """
        if created_at is None:
            created_at = int(time.time())
        event_id = compute_event_id(self.public_key, created_at, kind, tags, content)
        sig = self._key.sign_schnorr(bytes.fromhex(event_id), os.urandom(32))
        return Event(
            id=event_id,
            pubkey=self.public_key,
            created_at=created_at,
            kind=kind,
            tags=tags,
            content=content,
            sig=sig.hex(),
        )


class IdentityStore:
    """JSON file holding the identity secret as hex."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[Identity]:
        """Load the stored identity, or None if nothing is stored."""
        if not self.path.exists():
            return None
        data = json.loads(self.path.read_text(encoding="utf-8"))
        secret = data.get(SECRET_KEY_NAME)
        if not secret:
            return None
        return Identity.from_hex(secret)

    def save(self, identity: Identity) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {}
        if self.path.exists():
            data = json.loads(self.path.read_text(encoding="utf-8"))
        data[SECRET_KEY_NAME] = identity.secret_hex
        self.path.write_text(json.dumps(data), encoding="utf-8")
        os.chmod(self.path, 0o600)

    def load_or_create(self) -> Identity:
        """Load the stored identity, generating and persisting one if absent."""
        identity = self.load()
        if identity is None:
            identity = Identity.generate()
            self.save(identity)
            logger.info("Created new identity %s at %s", identity.public_key, self.path)
        return identity
