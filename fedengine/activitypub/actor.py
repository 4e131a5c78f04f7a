# fedengine/activitypub/actor.py
"""
ActivityPub Actor documents and the remote actor directory.

A local Actor is projected into its wire document with to_actor_document.
Remote actors are fetched on demand and cached in the ProfileStore by
ActorDirectory, which is also where inbound signature checks get keys.
"""

import hashlib
import logging
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization

from ..config import FederationConfig
from ..http import FederationClient
from ..models import Actor
from ..stores import KeyStore, ProfileStore
from .activity import ACTIVITY_STREAMS_CONTEXT, DID_KEY, EXTENSION_CONTEXT
from .signatures import fetch_actor_public_key, generate_keypair
from .webfinger import fetch_actor_by_url, parse_handle, resolve_handle

logger = logging.getLogger(__name__)

SECURITY_CONTEXT = "https://w3id.org/security/v1"
DID_PREFIX = "did:synapsis:"


def generate_did(public_key_pem: str) -> str:
    """
    Derive a portable identifier bound to a public key.

    The DID is the first 32 hex chars of SHA-256 over the key's DER form,
    so it survives moving the key to another node.
    """
    public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return DID_PREFIX + hashlib.sha256(der).hexdigest()[:32]


def _image(url: str) -> Dict[str, str]:
    media_type = "image/jpeg" if url.lower().endswith((".jpg", ".jpeg")) else "image/png"
    return {"type": "Image", "mediaType": media_type, "url": url}


def to_actor_document(actor: Actor, config: FederationConfig) -> Dict[str, Any]:
    """
    Project a local actor into its ActivityPub Actor document.

    Pure: reads nothing but its arguments.
    """
    actor_url = config.actor_url(actor.handle)
    context: list = [
        ACTIVITY_STREAMS_CONTEXT,
        SECURITY_CONTEXT,
        {
            "manuallyApprovesFollowers": "as:manuallyApprovesFollowers",
            "toot": "http://joinmastodon.org/ns#",
        },
    ]
    doc: Dict[str, Any] = {
        "@context": context,
        "id": actor_url,
        "type": "Person",
        "preferredUsername": actor.handle,
        "name": actor.display_name,
        "summary": actor.summary,
        "url": actor_url,
        "inbox": f"{actor_url}/inbox",
        "outbox": f"{actor_url}/outbox",
        "followers": f"{actor_url}/followers",
        "following": f"{actor_url}/following",
        "manuallyApprovesFollowers": False,
        "publicKey": {
            "id": config.key_id(actor.handle),
            "owner": actor_url,
            "publicKeyPem": actor.public_key,
        },
        "endpoints": {
            "sharedInbox": config.shared_inbox_url,
        },
    }
    if actor.avatar_url:
        doc["icon"] = _image(actor.avatar_url)
    if actor.header_url:
        doc["image"] = _image(actor.header_url)
    if actor.moved_to:
        doc["movedTo"] = actor.moved_to
    if actor.did:
        context.append(EXTENSION_CONTEXT)
        doc[DID_KEY] = actor.did
    return doc


def create_local_actor(
    handle: str,
    config: FederationConfig,
    profiles: ProfileStore,
    keys: KeyStore,
    display_name: Optional[str] = None,
    summary: Optional[str] = None,
) -> Actor:
    """
    Register a new local actor with a fresh keypair and DID.

    Raises:
        ValueError: The handle is taken
    """
    handle = handle.lower()
    if profiles.find_local_actor(handle):
        raise ValueError(f"Actor {handle} already exists")

    public_pem, private_pem = generate_keypair()
    actor_url = config.actor_url(handle)
    actor = Actor(
        id=actor_url,
        handle=handle,
        domain=config.domain,
        display_name=display_name or handle,
        summary=summary,
        inbox=f"{actor_url}/inbox",
        shared_inbox=config.shared_inbox_url,
        public_key=public_pem,
        did=generate_did(public_pem),
        local=True,
    )
    keys.put_private_key(actor.id, private_pem)
    profiles.upsert_actor(actor)
    logger.info(f"Created local actor {actor.full_handle} ({actor.did})")
    return actor


class ActorDirectory:
    """
    Lookup of actors by URL, local first, then cached, then remote.

    Args:
        config: Node configuration
        client: HTTP client for remote fetches
        profiles: Where remote actors are cached
    """

    def __init__(self, config: FederationConfig, client: FederationClient, profiles: ProfileStore):
        self.config = config
        self.client = client
        self.profiles = profiles

    def find_local_by_url(self, actor_url: str) -> Optional[Actor]:
        """The local actor a URL on this node refers to, if any."""
        handle = self.config.handle_from_actor_url(actor_url)
        if handle is None:
            return None
        return self.profiles.find_local_actor(handle)

    def get_remote_actor(self, actor_url: str, refresh: bool = False) -> Optional[Actor]:
        """
        Return a remote actor, fetching and caching it when needed.

        Returns None if the actor cannot be fetched.
        """
        cached = self.profiles.find_actor(actor_url)
        if cached is not None and cached.local:
            return cached
        if cached is not None and not refresh:
            return cached

        doc = fetch_actor_by_url(self.client, actor_url)
        if doc is None:
            return cached
        return self._cache_document(doc, actor_url, cached)

    def _cache_document(self, doc: Dict[str, Any], actor_url: str, cached: Optional[Actor]) -> Optional[Actor]:
        actor = Actor.from_document(doc)
        if actor.id != actor_url:
            logger.warning(f"Actor document id {actor.id} does not match {actor_url}")
            return None
        if cached is not None:
            actor.followers_count = cached.followers_count
            actor.following_count = cached.following_count
        self.profiles.upsert_actor(actor)
        logger.debug(f"Cached remote actor {actor.full_handle}")
        return actor

    def public_key_for(self, actor_url: str, refresh: bool = False) -> Optional[str]:
        """
        Public key PEM of an actor.

        Served from the cache unless refresh is set; falls back to reading
        the key straight off the actor document when the actor cannot be
        cached.
        """
        actor = self.get_remote_actor(actor_url, refresh=refresh)
        if actor is not None and actor.public_key:
            return actor.public_key
        return fetch_actor_public_key(self.client, actor_url)

    def resolve(self, target: str) -> Optional[Actor]:
        """
        Resolve an actor URL or a user@domain handle to a cached Actor.

        Handles go through WebFinger; returns None when discovery fails.
        """
        if target.startswith(("http://", "https://")):
            return self.get_remote_actor(target)

        parsed = parse_handle(target)
        if parsed is None:
            logger.warning(f"Not a handle or actor URL: {target}")
            return None
        username, domain = parsed
        if domain.lower() == self.config.domain.lower():
            return self.profiles.find_local_actor(username)

        doc = resolve_handle(self.client, username, domain)
        if doc is None:
            return None
        cached = self.profiles.find_actor(doc["id"])
        if cached is not None and cached.local:
            return cached
        return self._cache_document(doc, doc["id"], cached)
