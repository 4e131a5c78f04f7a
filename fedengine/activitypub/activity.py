# fedengine/activitypub/activity.py
"""
ActivityPub activity envelopes.

Activities are immutable once built. Builders exist for every kind the
engine emits:
- Create: a new Note
- Follow / Undo(Follow): subscribe / unsubscribe
- Like / Announce: endorse / share a post
- Accept / Reject: answer a Follow
- Delete: retract a post
- Move: account migration, carrying the portable identifier (DID) so
  nodes running the same extension can re-follow automatically
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from ..config import FederationConfig
from ..errors import ActivityValidationError
from ..models import Actor, LocalPost

ACTIVITY_STREAMS_CONTEXT = "https://www.w3.org/ns/activitystreams"
PUBLIC_AUDIENCE = "https://www.w3.org/ns/activitystreams#Public"

# Private extension namespace for DID-based migration
EXTENSION_CONTEXT = "https://synapsis.social/ns"
DID_KEY = "synapsis:did"


class ActivityType(str, Enum):
    """Activity kinds understood by the engine."""
    CREATE = "Create"
    FOLLOW = "Follow"
    LIKE = "Like"
    ANNOUNCE = "Announce"
    UNDO = "Undo"
    ACCEPT = "Accept"
    REJECT = "Reject"
    DELETE = "Delete"
    MOVE = "Move"

    @classmethod
    def parse(cls, value: Any) -> Optional["ActivityType"]:
        """Return the kind for a wire type name, or None if unrecognized."""
        try:
            return cls(value)
        except ValueError:
            return None


def _generate_id() -> str:
    return str(uuid.uuid4())


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def escape_html(text: str) -> str:
    """
    Escape plaintext for embedding as Note content.

    One-way: applied when a Note is serialized, never to stored content.
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#039;")
        .replace("\n", "<br>")
    )


@dataclass(frozen=True)
class Note:
    """
    A Note object. content holds plaintext; it is escaped on output.
    """
    id: str
    attributed_to: str
    content: str
    published: str
    to: Tuple[str, ...] = (PUBLIC_AUDIENCE,)
    cc: Tuple[str, ...] = ()
    in_reply_to: Optional[str] = None
    url: Optional[str] = None

    def to_activitypub(self) -> Dict[str, Any]:
        return {
            "@context": ACTIVITY_STREAMS_CONTEXT,
            "id": self.id,
            "type": "Note",
            "attributedTo": self.attributed_to,
            "content": escape_html(self.content),
            "published": self.published,
            "to": list(self.to),
            "cc": list(self.cc),
            "inReplyTo": self.in_reply_to,
            "url": self.url or self.id,
        }


ActivityObject = Union[str, Note, "Activity", Dict[str, Any]]


@dataclass(frozen=True)
class Activity:
    """
    An ActivityPub activity envelope.

    Attributes:
        id: Unique activity URL
        activity_type: Wire type name (one of ActivityType for built envelopes)
        actor: Actor URL
        object: URL reference, Note, nested Activity, or raw object
        target: Target URL (Move only)
        to: Primary audience
        cc: Secondary audience
        published: ISO timestamp
        context: JSON-LD @context
        extensions: Extra top-level members (e.g. the DID on Move)
    """
    id: str
    activity_type: str
    actor: str
    object: ActivityObject
    target: Optional[str] = None
    to: Tuple[str, ...] = ()
    cc: Tuple[str, ...] = ()
    published: Optional[str] = None
    context: Any = ACTIVITY_STREAMS_CONTEXT
    extensions: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> Optional[ActivityType]:
        return ActivityType.parse(self.activity_type)

    @property
    def object_id(self) -> Optional[str]:
        return object_id(self.object)

    def to_activitypub(self) -> Dict[str, Any]:
        """Return ActivityPub JSON-LD representation."""
        activity: Dict[str, Any] = {
            "@context": self.context,
            "id": self.id,
            "type": self.activity_type,
            "actor": self.actor,
            "object": _serialize_object(self.object),
        }
        if self.target is not None:
            activity["target"] = self.target
        if self.published is not None:
            activity["published"] = self.published
        if self.to:
            activity["to"] = list(self.to)
        if self.cc:
            activity["cc"] = list(self.cc)
        activity.update(self.extensions)
        return activity


def _serialize_object(value: ActivityObject) -> Any:
    if isinstance(value, (Note, Activity)):
        return value.to_activitypub()
    return value


def object_id(value: Any) -> Optional[str]:
    """The id of an object given as a URL, an embedded object, or an envelope."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, (Note, Activity)):
        return value.id
    if isinstance(value, dict) and isinstance(value.get("id"), str):
        return value["id"]
    return None


def activity_did(activity: Activity) -> Optional[str]:
    """The portable identifier carried by a Move, if any."""
    did = activity.extensions.get(DID_KEY)
    return did if isinstance(did, str) and did else None


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def build_note(post: LocalPost, author: Actor) -> Note:
    """Project a local post into a Note."""
    published = datetime.fromtimestamp(post.created_at, tz=timezone.utc)
    return Note(
        id=post.ap_id,
        attributed_to=author.id,
        content=post.content,
        published=published.strftime("%Y-%m-%dT%H:%M:%SZ"),
        to=(PUBLIC_AUDIENCE,),
        cc=(f"{author.id}/followers",),
        in_reply_to=post.reply_to_ap_id,
        url=post.ap_id,
    )


def build_create(
    post: LocalPost,
    author: Actor,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    """Create activity for a new post."""
    note = build_note(post, author)
    return Activity(
        id=config.activity_url(activity_id or post.post_id),
        activity_type=ActivityType.CREATE.value,
        actor=author.id,
        object=note,
        published=note.published,
        to=note.to,
        cc=note.cc,
    )


def build_follow(
    follower: Actor,
    target_actor_url: str,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    return Activity(
        id=config.activity_url(activity_id or _generate_id()),
        activity_type=ActivityType.FOLLOW.value,
        actor=follower.id,
        object=target_actor_url,
    )


def build_like(
    actor: Actor,
    target_post_url: str,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    return Activity(
        id=config.activity_url(activity_id or _generate_id()),
        activity_type=ActivityType.LIKE.value,
        actor=actor.id,
        object=target_post_url,
    )


def build_announce(
    actor: Actor,
    target_post_url: str,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    """Announce (repost), addressed publicly and to the actor's followers."""
    return Activity(
        id=config.activity_url(activity_id or _generate_id()),
        activity_type=ActivityType.ANNOUNCE.value,
        actor=actor.id,
        object=target_post_url,
        published=_now_iso(),
        to=(PUBLIC_AUDIENCE,),
        cc=(f"{actor.id}/followers",),
    )


def build_undo(
    actor: Actor,
    original: Activity,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    """Undo an earlier activity, embedded by value."""
    return Activity(
        id=config.activity_url(activity_id or _generate_id()),
        activity_type=ActivityType.UNDO.value,
        actor=actor.id,
        object=original,
    )


def build_accept(
    actor: Actor,
    follow: Activity,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    """Accept a Follow, embedding it by value."""
    return Activity(
        id=config.activity_url(activity_id or _generate_id()),
        activity_type=ActivityType.ACCEPT.value,
        actor=actor.id,
        object=follow,
    )


def build_reject(
    actor: Actor,
    follow: Activity,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    return Activity(
        id=config.activity_url(activity_id or _generate_id()),
        activity_type=ActivityType.REJECT.value,
        actor=actor.id,
        object=follow,
    )


def build_delete(
    actor: Actor,
    object_url: str,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    """Delete a post, sent as a Tombstone."""
    return Activity(
        id=config.activity_url(activity_id or _generate_id()),
        activity_type=ActivityType.DELETE.value,
        actor=actor.id,
        object={"id": object_url, "type": "Tombstone"},
        to=(PUBLIC_AUDIENCE,),
    )


def build_move(
    actor: Actor,
    old_actor_url: str,
    new_actor_url: str,
    config: FederationConfig,
    activity_id: Optional[str] = None,
) -> Activity:
    """
    Move activity for an account migration.

    Carries the actor's DID under the extension namespace; receivers that
    understand it re-follow automatically, others treat it as a standard
    Move.
    """
    extensions = {DID_KEY: actor.did} if actor.did else {}
    return Activity(
        id=config.activity_url(activity_id or f"move-{_generate_id()}"),
        activity_type=ActivityType.MOVE.value,
        actor=old_actor_url,
        object=old_actor_url,
        target=new_actor_url,
        context=[
            ACTIVITY_STREAMS_CONTEXT,
            EXTENSION_CONTEXT,
            {
                "synapsis": f"{EXTENSION_CONTEXT}#",
                DID_KEY: {"@id": DID_KEY, "@type": "@id"},
            },
        ],
        extensions=extensions,
    )


# ---------------------------------------------------------------------------
# Boundary parsing
# ---------------------------------------------------------------------------

_KNOWN_MEMBERS = {"@context", "id", "type", "actor", "object", "target",
                  "to", "cc", "published"}


def _audience(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(v for v in value if isinstance(v, str))
    return ()


def parse_activity(data: Any) -> Activity:
    """
    Validate an inbound activity document and build an envelope.

    Nested objects are kept as dicts; handlers validate their own object
    shapes.

    Raises:
        ActivityValidationError: The document is not a well-formed activity
    """
    if not isinstance(data, dict):
        raise ActivityValidationError("Activity must be a JSON object")

    errors: List[str] = []
    activity_id = data.get("id")
    if not isinstance(activity_id, str) or not activity_id:
        errors.append("missing id")

    activity_type = data.get("type")
    if not isinstance(activity_type, str) or not activity_type:
        errors.append("missing type")

    actor = object_id(data.get("actor"))
    if actor is None:
        errors.append("missing actor")

    obj = data.get("object")
    if ActivityType.parse(activity_type) is not None:
        if not isinstance(obj, (str, dict)) or (isinstance(obj, str) and not obj):
            errors.append("missing object")

    target = data.get("target")
    if target is not None:
        target = object_id(target)

    if errors:
        raise ActivityValidationError("Invalid activity: " + ", ".join(errors))

    extensions = {k: v for k, v in data.items() if k not in _KNOWN_MEMBERS}
    published = data.get("published")

    return Activity(
        id=activity_id,
        activity_type=activity_type,
        actor=actor,
        object=obj,
        target=target,
        to=_audience(data.get("to")),
        cc=_audience(data.get("cc")),
        published=published if isinstance(published, str) else None,
        context=data.get("@context", ACTIVITY_STREAMS_CONTEXT),
        extensions=extensions,
    )
