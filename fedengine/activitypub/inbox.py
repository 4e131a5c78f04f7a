# fedengine/activitypub/inbox.py
"""
Inbound activity processing.

For every POST to an inbox the dispatcher:
1. Verifies the HTTP signature against the sender's public key
2. Validates the activity envelope
3. Dispatches on the activity type to a handler that applies the state
   transition to the profile and post stores

Handlers are idempotent: remote nodes redeliver, so each one checks
existing state before writing and treats repeats as successful no-ops.
"""

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..config import FederationConfig
from ..errors import ActivityValidationError
from ..http import FederationClient
from ..models import Actor, RemoteFollow, RemoteFollower
from ..stores import KeyStore, PostStore, ProfileStore
from .activity import (
    Activity,
    ActivityType,
    build_accept,
    object_id,
    parse_activity,
)
from .actor import ActorDirectory
from .delivery import Delivery
from .migration import MigrationCoordinator
from .remote_posts import cached_post_from_note
from .result import HandlerResult
from .signatures import verify_request

logger = logging.getLogger(__name__)

Handler = Callable[[Activity], HandlerResult]


class InboxDispatcher:
    """
    Authenticates and applies inbound activities.

    Args:
        config: Node configuration
        client: HTTP client for actor/key fetches
        profiles: Actors and follow edges
        posts: Local posts and remote cache
        keys: Private keys of local actors (to sign Accepts)
        delivery: Outbound delivery (built from config/client if omitted)
        directory: Remote actor lookup (built if omitted)
        migration: Move handling (built if omitted)
    """

    def __init__(
        self,
        config: FederationConfig,
        client: FederationClient,
        profiles: ProfileStore,
        posts: PostStore,
        keys: KeyStore,
        delivery: Optional[Delivery] = None,
        directory: Optional[ActorDirectory] = None,
        migration: Optional[MigrationCoordinator] = None,
    ):
        self.config = config
        self.client = client
        self.profiles = profiles
        self.posts = posts
        self.keys = keys
        self.delivery = delivery or Delivery(config, client)
        self.directory = directory or ActorDirectory(config, client, profiles)
        self.migration = migration or MigrationCoordinator(
            config, self.directory, profiles, keys, self.delivery
        )

        self._handlers: Dict[ActivityType, Handler] = {
            ActivityType.CREATE: self._handle_create,
            ActivityType.FOLLOW: self._handle_follow,
            ActivityType.LIKE: self._handle_like,
            ActivityType.ANNOUNCE: self._handle_announce,
            ActivityType.UNDO: self._handle_undo,
            ActivityType.DELETE: self._handle_delete,
            ActivityType.ACCEPT: self._handle_accept,
            ActivityType.REJECT: self._handle_reject,
            ActivityType.MOVE: self._handle_move,
        }
        missing = set(ActivityType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No inbox handler for {sorted(m.value for m in missing)}")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def process(
        self,
        data: Any,
        headers: Mapping[str, str],
        path: str,
        body: bytes | str | None = None,
    ) -> HandlerResult:
        """
        Process one inbound activity document.

        Args:
            data: Parsed JSON body
            headers: Request headers
            path: Request path the activity was POSTed to
            body: Raw body, used to check the Digest header

        Returns:
            HandlerResult; never raises
        """
        sender = object_id(data.get("actor")) if isinstance(data, dict) else None
        verified = self.verify_sender(sender, headers, path, body)
        if not verified and self.config.require_signatures:
            return HandlerResult.fail("Invalid signature")

        try:
            activity = parse_activity(data)
        except ActivityValidationError as e:
            logger.warning(f"Rejected inbound activity: {e}")
            return HandlerResult.fail(str(e))

        kind = activity.kind
        if kind is None:
            logger.info(f"Unhandled activity type {activity.activity_type} from {activity.actor}")
            return HandlerResult.ok(ignored=True)

        try:
            result = self._handlers[kind](activity)
        except Exception:
            logger.exception(f"Error processing {activity.activity_type} {activity.id}")
            return HandlerResult.fail(f"Failed to process {activity.activity_type}")

        result.details.setdefault("verified", verified)
        return result

    def verify_sender(
        self,
        actor_url: Optional[str],
        headers: Mapping[str, str],
        path: str,
        body: bytes | str | None = None,
    ) -> bool:
        """
        Check the request signature against the sender's key.

        A cached key that fails is refetched once in case it rotated.
        Failures are logged, never raised.
        """
        if not actor_url:
            logger.warning("Inbound activity has no actor; cannot verify signature")
            return False

        public_key = self.directory.public_key_for(actor_url)
        if not public_key:
            logger.warning(f"Could not fetch public key for {actor_url}")
            return False

        if verify_request("POST", path, headers, public_key, body=body):
            return True

        refreshed = self.directory.public_key_for(actor_url, refresh=True)
        if refreshed and refreshed != public_key:
            if verify_request("POST", path, headers, refreshed, body=body):
                return True

        logger.warning(f"Invalid signature on request from {actor_url}")
        return False

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_create(self, activity: Activity) -> HandlerResult:
        obj = activity.object
        if not isinstance(obj, dict) or obj.get("type") != "Note":
            logger.debug(f"Ignoring Create of non-Note from {activity.actor}")
            return HandlerResult.ok(ignored=True)

        ap_id = obj.get("id")
        if not isinstance(ap_id, str) or not ap_id or not object_id(obj.get("attributedTo")):
            logger.warning(f"Create {activity.id} missing id or attributedTo")
            return HandlerResult.fail("Missing required fields")

        if self.posts.find_cached_post(ap_id):
            logger.debug(f"Post already cached: {ap_id}")
            return HandlerResult.ok(duplicate=True)

        post = cached_post_from_note(obj, self.directory)
        if not self.posts.insert_cached_post(post):
            return HandlerResult.ok(duplicate=True)

        logger.info(f"Cached remote post from {post.author_handle}: {ap_id}")
        return HandlerResult.ok(cached=ap_id)

    def _handle_follow(self, activity: Activity) -> HandlerResult:
        target_url = activity.object_id
        if not target_url:
            return HandlerResult.fail("Invalid follow target")

        local = self.directory.find_local_by_url(target_url)
        if local is None:
            return HandlerResult.fail("User not found")
        if local.suspended:
            return HandlerResult.fail("User is suspended")

        private_key = self.keys.get_private_key(local.id)
        if not private_key:
            logger.error(f"{local.handle} has no private key for signing")
            return HandlerResult.fail("Missing signing key")

        remote = self.directory.get_remote_actor(activity.actor)
        if remote is None or not remote.inbox:
            logger.error(f"Could not fetch inbox of {activity.actor}")
            return HandlerResult.fail("Could not fetch remote actor")

        existing = self.profiles.find_follow_edge(local.id, activity.actor)
        if existing is not None and existing.activity_id == activity.id:
            logger.debug(f"Duplicate Follow {activity.id}")
            return HandlerResult.ok(duplicate=True)

        created = self.profiles.upsert_follow_edge(RemoteFollower(
            local_actor_id=local.id,
            actor_url=activity.actor,
            inbox_url=remote.inbox,
            shared_inbox_url=remote.shared_inbox,
            handle=remote.full_handle,
            activity_id=activity.id,
        ))
        if created:
            self.profiles.increment_follower_count(local.id, 1)
            logger.info(f"{activity.actor} now follows {local.handle}")
        elif existing is None:
            # A concurrent delivery of the same Follow won the insert.
            return HandlerResult.ok(duplicate=True)

        follow = Activity(
            id=activity.id,
            activity_type=ActivityType.FOLLOW.value,
            actor=activity.actor,
            object=target_url,
        )
        accept = build_accept(local, follow, self.config)
        result = self.delivery.deliver_one(
            accept, remote.inbox, private_key, self.config.key_id(local.handle)
        )
        if not result.success:
            logger.error(f"Failed to deliver Accept to {remote.inbox}: {result.error}")
        else:
            logger.info(f"Sent Accept to {remote.inbox}")

        return HandlerResult.ok(created=created, accept_delivered=result.success)

    def _handle_interaction(self, activity: Activity, kind: ActivityType) -> HandlerResult:
        target_url = activity.object_id
        if not target_url:
            return HandlerResult.fail(f"Invalid {kind.value.lower()} target")

        post = self.posts.find_local_post(target_url)
        if post is None:
            logger.debug(f"{kind.value} target not found locally: {target_url}")
            return HandlerResult.ok(ignored=True)

        if not self.posts.record_interaction(kind.value, target_url, activity.actor):
            return HandlerResult.ok(duplicate=True)

        if kind is ActivityType.LIKE:
            self.posts.increment_like_count(target_url, 1)
        else:
            self.posts.increment_repost_count(target_url, 1)
        logger.info(f"{kind.value} of {post.post_id} by {activity.actor}")
        return HandlerResult.ok()

    def _handle_like(self, activity: Activity) -> HandlerResult:
        return self._handle_interaction(activity, ActivityType.LIKE)

    def _handle_announce(self, activity: Activity) -> HandlerResult:
        return self._handle_interaction(activity, ActivityType.ANNOUNCE)

    def _remove_follower(self, local_actor_id: str, actor_url: str) -> HandlerResult:
        if not self.profiles.delete_follow_edge(local_actor_id, actor_url):
            logger.debug(f"No follow edge {actor_url} -> {local_actor_id} to undo")
            return HandlerResult.ok(removed=False)
        self.profiles.increment_follower_count(local_actor_id, -1)
        logger.info(f"Removed remote follower {actor_url} of {local_actor_id}")
        return HandlerResult.ok(removed=True)

    def _handle_undo(self, activity: Activity) -> HandlerResult:
        original = activity.object

        if isinstance(original, str):
            edge = self.profiles.find_follow_edge_by_activity(original)
            if edge is None or edge.actor_url != activity.actor:
                return HandlerResult.ok(ignored=True)
            return self._remove_follower(edge.local_actor_id, activity.actor)

        if not isinstance(original, dict) or not isinstance(original.get("type"), str):
            return HandlerResult.fail("Invalid undo target")

        original_actor = object_id(original.get("actor"))
        if original_actor is not None and original_actor != activity.actor:
            logger.warning(f"Undo by {activity.actor} of activity by {original_actor} rejected")
            return HandlerResult.fail("Undo actor mismatch")

        kind = ActivityType.parse(original["type"])
        logger.info(f"Received Undo({original['type']}) from {activity.actor}")

        if kind is ActivityType.FOLLOW:
            target_url = object_id(original.get("object"))
            local = self.directory.find_local_by_url(target_url) if target_url else None
            if local is None and isinstance(original.get("id"), str):
                edge = self.profiles.find_follow_edge_by_activity(original["id"])
                if edge is not None:
                    return self._remove_follower(edge.local_actor_id, activity.actor)
            if local is None:
                return HandlerResult.ok(ignored=True)
            return self._remove_follower(local.id, activity.actor)

        if kind in (ActivityType.LIKE, ActivityType.ANNOUNCE):
            target_url = object_id(original.get("object"))
            if not target_url or not self.posts.remove_interaction(kind.value, target_url, activity.actor):
                return HandlerResult.ok(ignored=True)
            if kind is ActivityType.LIKE:
                self.posts.increment_like_count(target_url, -1)
            else:
                self.posts.increment_repost_count(target_url, -1)
            return HandlerResult.ok(removed=True)

        return HandlerResult.ok(ignored=True)

    def _handle_delete(self, activity: Activity) -> HandlerResult:
        deleted_id = activity.object_id
        if not deleted_id:
            logger.debug("Delete activity missing object id")
            return HandlerResult.ok(ignored=True)

        cached = self.posts.find_cached_post(deleted_id)
        if cached is None:
            logger.debug(f"Deleted content not in cache: {deleted_id}")
            return HandlerResult.ok(ignored=True)

        if cached.author_actor_url != activity.actor:
            logger.warning(
                f"Delete of {deleted_id} by {activity.actor} rejected; "
                f"author is {cached.author_actor_url}"
            )
            return HandlerResult.fail("Delete actor mismatch")

        self.posts.delete_cached_post(deleted_id)
        logger.info(f"Deleted cached remote post {deleted_id}")
        return HandlerResult.ok(deleted=True)

    def _find_answered_follow(self, activity: Activity) -> Optional[RemoteFollow]:
        """The local outbound follow an Accept/Reject from activity.actor answers."""
        obj = activity.object
        if isinstance(obj, str):
            for edge in self.profiles.list_outbound_follows_to(activity.actor):
                if edge.activity_id == obj:
                    return edge
            return None

        if not isinstance(obj, dict) or obj.get("type") != ActivityType.FOLLOW.value:
            return None
        local_url = object_id(obj.get("actor"))
        local: Optional[Actor] = self.directory.find_local_by_url(local_url) if local_url else None
        if local is None:
            return None
        return self.profiles.find_outbound_follow(local.id, activity.actor)

    def _handle_accept(self, activity: Activity) -> HandlerResult:
        edge = self._find_answered_follow(activity)
        if edge is None:
            logger.debug(f"Accept from {activity.actor} matches no pending follow")
            return HandlerResult.ok(ignored=True)

        if not edge.accepted:
            edge.accepted = True
            self.profiles.update_outbound_follow(edge)
        logger.info(f"Follow to {activity.actor} confirmed for {edge.follower_id}")
        return HandlerResult.ok(accepted=True)

    def _handle_reject(self, activity: Activity) -> HandlerResult:
        edge = self._find_answered_follow(activity)
        if edge is None:
            logger.debug(f"Reject from {activity.actor} matches no pending follow")
            return HandlerResult.ok(ignored=True)

        self.profiles.delete_outbound_follow(edge.follower_id, edge.target_actor_url)
        logger.info(f"Follow to {activity.actor} rejected for {edge.follower_id}")
        return HandlerResult.ok(removed=True)

    def _handle_move(self, activity: Activity) -> HandlerResult:
        return self.migration.handle_move(activity)
