# fedengine/activitypub/__init__.py
"""
ActivityPub federation for fedengine.

Core pieces:
- signatures: HTTP Signature signing and verification
- webfinger / actor: discovery and the remote actor directory
- activity: activity envelopes and builders
- inbox: inbound verification and dispatch
- delivery / outbox: signed outbound delivery
- migration: DID-based account moves
- remote_posts: caching remote Notes fetched on demand
"""

from .activity import Activity, ActivityType, Note, parse_activity
from .actor import ActorDirectory, create_local_actor, generate_did, to_actor_document
from .delivery import Delivery, DeliveryResult, FanoutReport
from .inbox import InboxDispatcher
from .migration import MigrationCoordinator
from .outbox import Outbox
from .remote_posts import fetch_remote_post
from .result import HandlerResult
from .signatures import generate_keypair, sign_request, verify_request
from .webfinger import resolve_handle, webfinger_document

__all__ = [
    "Activity",
    "ActivityType",
    "Note",
    "parse_activity",
    "ActorDirectory",
    "create_local_actor",
    "generate_did",
    "to_actor_document",
    "Delivery",
    "DeliveryResult",
    "FanoutReport",
    "InboxDispatcher",
    "MigrationCoordinator",
    "Outbox",
    "fetch_remote_post",
    "HandlerResult",
    "generate_keypair",
    "sign_request",
    "verify_request",
    "resolve_handle",
    "webfinger_document",
]
