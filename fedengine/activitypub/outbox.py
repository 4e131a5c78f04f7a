# fedengine/activitypub/outbox.py
"""
Outbound side of local domain events.

Each operation updates the local stores, builds the matching activity and
delivers it: posts and deletes fan out to followers, while follows and
interactions go to the one actor concerned. Remote failures are reported
in the result, never raised.
"""

import logging
import uuid
from typing import Optional

from ..config import FederationConfig
from ..http import FederationClient
from ..models import Actor, LocalPost, RemoteFollow
from ..stores import KeyStore, PostStore, ProfileStore
from .activity import (
    Activity,
    ActivityType,
    build_announce,
    build_create,
    build_delete,
    build_follow,
    build_like,
    build_undo,
)
from .actor import ActorDirectory
from .delivery import Delivery, get_follower_inboxes, unique_inboxes
from .remote_posts import fetch_remote_post
from .result import HandlerResult

logger = logging.getLogger(__name__)


class Outbox:
    """
    Publishes local activity to the network.

    Usage:
        outbox = Outbox(config, client, profiles, posts, keys)
        result = outbox.publish_post("alice", "Hello, fediverse")
        result.details["delivered"]
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
    ):
        self.config = config
        self.client = client
        self.profiles = profiles
        self.posts = posts
        self.keys = keys
        self.delivery = delivery or Delivery(config, client)
        self.directory = directory or ActorDirectory(config, client, profiles)

    def _signer(self, handle: str):
        """(actor, private key, None) for a local handle, or (None, None, failure)."""
        actor = self.profiles.find_local_actor(handle)
        if actor is None:
            return None, None, HandlerResult.fail("User not found")
        if actor.suspended:
            return None, None, HandlerResult.fail("User is suspended")
        private_key = self.keys.get_private_key(actor.id)
        if not private_key:
            return None, None, HandlerResult.fail("Missing signing key")
        return actor, private_key, None

    def _fanout(self, actor: Actor, private_key: str, activity: Activity, *extra_inboxes: Optional[str]):
        inboxes = get_follower_inboxes(self.profiles, actor.id)
        inboxes.extend(i for i in extra_inboxes if i)
        return self.delivery.deliver_to_followers(
            activity, unique_inboxes(inboxes), private_key, self.config.key_id(actor.handle)
        )

    def _author_inbox(self, post_url: str) -> Optional[str]:
        """Inbox of the remote author of a cached post, if known."""
        cached = self.posts.find_cached_post(post_url)
        if cached is None:
            return None
        author = self.directory.get_remote_actor(cached.author_actor_url)
        return author.delivery_inbox if author else None

    def publish_post(
        self,
        handle: str,
        content: str,
        reply_to: Optional[str] = None,
    ) -> HandlerResult:
        """
        Store a new local post and deliver its Create to every follower.

        Replies to a cached remote post are also delivered to its author.
        """
        actor, private_key, error = self._signer(handle)
        if error:
            return error

        post_id = str(uuid.uuid4())
        post = LocalPost(
            post_id=post_id,
            ap_id=self.config.post_url(post_id),
            author_id=actor.id,
            content=content,
            reply_to_ap_id=reply_to,
        )
        self.posts.insert_local_post(post)

        create = build_create(post, actor, self.config)
        report = self._fanout(
            actor, private_key, create,
            self._author_inbox(reply_to) if reply_to else None,
        )
        logger.info(f"{actor.handle} published {post.ap_id}")
        return HandlerResult.ok(
            post=post.ap_id,
            activity_id=create.id,
            delivered=report.delivered,
            failed=report.failed,
        )

    def delete_post(self, handle: str, post_url: str) -> HandlerResult:
        """Remove a local post and tell followers with a Delete."""
        actor, private_key, error = self._signer(handle)
        if error:
            return error

        post = self.posts.find_local_post(post_url)
        if post is None:
            return HandlerResult.fail("Post not found")
        if post.author_id != actor.id:
            return HandlerResult.fail("Not the author of this post")

        self.posts.delete_local_post(post_url)
        delete = build_delete(actor, post_url, self.config)
        report = self._fanout(actor, private_key, delete)
        return HandlerResult.ok(activity_id=delete.id, delivered=report.delivered, failed=report.failed)

    def follow(self, handle: str, target: str) -> HandlerResult:
        """
        Follow a remote actor given by URL or user@domain.

        The edge is stored as pending until the remote node Accepts.
        """
        actor, private_key, error = self._signer(handle)
        if error:
            return error

        remote = self.directory.resolve(target)
        if remote is None:
            return HandlerResult.fail("Could not resolve remote actor")
        if remote.local:
            return HandlerResult.fail("Cannot follow a local actor")
        inbox = remote.inbox or remote.shared_inbox
        if not inbox:
            return HandlerResult.fail("Remote actor has no inbox")

        if self.profiles.find_outbound_follow(actor.id, remote.id):
            return HandlerResult.ok(duplicate=True)

        follow = build_follow(actor, remote.id, self.config)
        added = self.profiles.add_outbound_follow(RemoteFollow(
            follower_id=actor.id,
            target_actor_url=remote.id,
            inbox_url=inbox,
            target_handle=remote.full_handle,
            activity_id=follow.id,
            display_name=remote.display_name,
            avatar_url=remote.avatar_url,
        ))
        if not added:
            return HandlerResult.ok(duplicate=True)

        result = self.delivery.deliver_one(follow, inbox, private_key, self.config.key_id(actor.handle))
        logger.info(f"{actor.handle} requested to follow {remote.full_handle}")
        return HandlerResult.ok(activity_id=follow.id, delivered=result.success, error=result.error)

    def unfollow(self, handle: str, target_actor_url: str) -> HandlerResult:
        """Drop an outbound follow and send Undo(Follow)."""
        actor, private_key, error = self._signer(handle)
        if error:
            return error

        edge = self.profiles.find_outbound_follow(actor.id, target_actor_url)
        if edge is None:
            return HandlerResult.ok(removed=False)

        follow = Activity(
            id=edge.activity_id or self.config.activity_url(str(uuid.uuid4())),
            activity_type=ActivityType.FOLLOW.value,
            actor=actor.id,
            object=target_actor_url,
        )
        undo = build_undo(actor, follow, self.config)
        self.profiles.delete_outbound_follow(actor.id, target_actor_url)

        result = self.delivery.deliver_one(undo, edge.inbox_url, private_key, self.config.key_id(actor.handle))
        return HandlerResult.ok(removed=True, activity_id=undo.id, delivered=result.success)

    def _interact(self, handle: str, post_url: str, kind: ActivityType) -> HandlerResult:
        actor, private_key, error = self._signer(handle)
        if error:
            return error

        cached = None
        if not post_url.startswith(f"{self.config.base_url}/"):
            cached = fetch_remote_post(self.client, self.posts, self.directory, post_url)
        if cached is None:
            return HandlerResult.fail("Post not found")
        post_url = cached.ap_id

        if kind is ActivityType.LIKE:
            activity = build_like(actor, post_url, self.config)
            author_inbox = self._author_inbox(post_url)
            if not author_inbox:
                return HandlerResult.fail("Could not fetch remote actor")
            result = self.delivery.deliver_one(
                activity, author_inbox, private_key, self.config.key_id(actor.handle)
            )
            return HandlerResult.ok(activity_id=activity.id, delivered=result.success)

        activity = build_announce(actor, post_url, self.config)
        report = self._fanout(actor, private_key, activity, self._author_inbox(post_url))
        return HandlerResult.ok(activity_id=activity.id, delivered=report.delivered, failed=report.failed)

    def like(self, handle: str, post_url: str) -> HandlerResult:
        """Like a remote post, fetching it if not cached; delivered to its author."""
        return self._interact(handle, post_url, ActivityType.LIKE)

    def announce(self, handle: str, post_url: str) -> HandlerResult:
        """Repost a remote post, fetching it if not cached, to followers and its author."""
        return self._interact(handle, post_url, ActivityType.ANNOUNCE)
