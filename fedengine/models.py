# fedengine/models.py
"""
Domain records handled by the federation engine.

- Actor: a local or cached remote identity
- RemoteFollower: a remote actor following a local actor
- RemoteFollow: a local actor following a remote actor
- LocalPost: content authored on this node
- CachedPost: read-only cache of a remote Note
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse


def _new_id() -> str:
    return str(uuid.uuid4())


def _icon_url(value: Any) -> Optional[str]:
    """Extract an image URL from an icon/image field (object or bare URL)."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("url"), str):
        return value["url"]
    return None


@dataclass
class Actor:
    """
    A federated identity.

    Local actors have a private key in the KeyStore and a DID; remote
    actors are cached copies of fetched Actor documents.

    Attributes:
        id: Canonical actor URL
        handle: Username part of the handle
        domain: Host the actor lives on
        display_name: Human-readable name
        summary: Profile text
        inbox: Direct inbox URL
        shared_inbox: Node-wide inbox URL, if advertised
        public_key: PEM-encoded public key
        moved_to: New actor URL after a migration
        did: Portable identifier (local actors, or remotes advertising one)
        local: Whether this node hosts the actor
    """
    id: str
    handle: str
    domain: str
    display_name: Optional[str] = None
    summary: Optional[str] = None
    inbox: Optional[str] = None
    shared_inbox: Optional[str] = None
    public_key: Optional[str] = None
    moved_to: Optional[str] = None
    did: Optional[str] = None
    avatar_url: Optional[str] = None
    header_url: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0
    suspended: bool = False
    local: bool = False
    fetched_at: float = field(default_factory=time.time)

    @property
    def full_handle(self) -> str:
        return f"{self.handle}@{self.domain}"

    @property
    def delivery_inbox(self) -> Optional[str]:
        """Shared inbox when advertised, else the direct inbox."""
        return self.shared_inbox or self.inbox

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Actor":
        return cls(**data)

    @classmethod
    def from_document(cls, doc: Dict[str, Any], did_key: str = "synapsis:did") -> "Actor":
        """
        Build a remote cache entry from a wire Actor document.

        The document must already have been validated to carry an id.
        """
        actor_url = doc["id"]
        host = urlparse(actor_url).netloc
        handle = doc.get("preferredUsername")
        if not handle:
            parts = [p for p in urlparse(actor_url).path.split("/") if p]
            handle = parts[-1] if parts else "unknown"

        endpoints = doc.get("endpoints") if isinstance(doc.get("endpoints"), dict) else {}
        public_key = doc.get("publicKey") if isinstance(doc.get("publicKey"), dict) else {}

        return cls(
            id=actor_url,
            handle=handle,
            domain=host,
            display_name=doc.get("name") or doc.get("preferredUsername"),
            summary=doc.get("summary"),
            inbox=doc.get("inbox"),
            shared_inbox=endpoints.get("sharedInbox"),
            public_key=public_key.get("publicKeyPem"),
            moved_to=doc.get("movedTo"),
            did=doc.get(did_key),
            avatar_url=_icon_url(doc.get("icon")),
            header_url=_icon_url(doc.get("image")),
            local=False,
        )


@dataclass
class RemoteFollower:
    """
    A remote actor following a local actor.

    Attributes:
        local_actor_id: URL of the local actor being followed
        actor_url: URL of the remote follower
        inbox_url: Remote follower's direct inbox
        shared_inbox_url: Remote node's shared inbox, if any
        handle: Remote follower's user@domain, if known
        activity_id: Id of the Follow activity that created the edge
    """
    local_actor_id: str
    actor_url: str
    inbox_url: str
    shared_inbox_url: Optional[str] = None
    handle: Optional[str] = None
    activity_id: Optional[str] = None
    edge_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)

    @property
    def delivery_inbox(self) -> str:
        return self.shared_inbox_url or self.inbox_url

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteFollower":
        return cls(**data)


@dataclass
class RemoteFollow:
    """
    A local actor following a remote actor.

    Edge identity (edge_id) is preserved when a migration rewrites the
    target in place.
    """
    follower_id: str
    target_actor_url: str
    inbox_url: str
    target_handle: Optional[str] = None
    activity_id: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    accepted: bool = False
    edge_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteFollow":
        return cls(**data)


@dataclass
class LocalPost:
    """A post authored on this node. Content is stored as plaintext."""
    post_id: str
    ap_id: str
    author_id: str
    content: str
    created_at: float = field(default_factory=time.time)
    reply_to_ap_id: Optional[str] = None
    likes_count: int = 0
    reposts_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalPost":
        return cls(**data)


@dataclass
class CachedPost:
    """
    Read-only cache of a remote Note, keyed by its ap_id.

    Never updated once stored; removed only by a Delete from its author.
    """
    ap_id: str
    author_handle: str
    author_actor_url: str
    content: str
    author_display_name: Optional[str] = None
    author_avatar_url: Optional[str] = None
    published_at: Optional[str] = None
    media: List[Dict[str, Any]] = field(default_factory=list)
    fetched_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedPost":
        return cls(**data)
