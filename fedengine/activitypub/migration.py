# fedengine/activitypub/migration.py
"""
Account migration via Move.

A standard Move only tells followers that an account relocated; people
re-follow by hand. When the Move carries the mover's DID, both nodes run
the same extension and the move is trusted as the same identity, so
every local follow of the old actor is rewritten in place to the new
actor and a fresh Follow is sent to the new inbox.
"""

import logging
import uuid
from dataclasses import replace

from ..config import FederationConfig
from ..stores import KeyStore, ProfileStore
from .activity import Activity, activity_did, build_follow, build_move
from .actor import ActorDirectory
from .delivery import Delivery, get_follower_inboxes
from .result import HandlerResult

logger = logging.getLogger(__name__)


class MigrationCoordinator:
    """
    Handles inbound Move activities and announces local moves.

    Args:
        config: Node configuration
        directory: Remote actor lookup
        profiles: Actors and follow edges
        keys: Private keys of local followers
        delivery: Outbound delivery
    """

    def __init__(
        self,
        config: FederationConfig,
        directory: ActorDirectory,
        profiles: ProfileStore,
        keys: KeyStore,
        delivery: Delivery,
    ):
        self.config = config
        self.directory = directory
        self.profiles = profiles
        self.keys = keys
        self.delivery = delivery

    def _mark_moved(self, old_actor_url: str, new_actor_url: str) -> None:
        cached = self.profiles.find_actor(old_actor_url)
        if cached is not None and not cached.local and cached.moved_to != new_actor_url:
            cached.moved_to = new_actor_url
            self.profiles.upsert_actor(cached)

    def handle_move(self, activity: Activity) -> HandlerResult:
        """
        Process an inbound Move.

        Without a DID the move is only recorded. With one, local follows of
        the old actor are migrated independently; a failing edge is logged
        and skipped.
        """
        old_actor_url = activity.object_id
        new_actor_url = activity.target
        if not old_actor_url or not new_actor_url:
            return HandlerResult.fail("Invalid move activity")
        if activity.actor != old_actor_url:
            logger.warning(f"Move of {old_actor_url} sent by {activity.actor}; rejected")
            return HandlerResult.fail("Move actor mismatch")

        logger.info(f"Received Move: {old_actor_url} -> {new_actor_url}")
        old_actor = self.profiles.find_actor(old_actor_url)
        self._mark_moved(old_actor_url, new_actor_url)

        did = activity_did(activity)
        if did is None:
            logger.info("Standard Move (no DID); followers must re-follow manually")
            return HandlerResult.ok(mode="standard", migrated=0)

        if old_actor is not None and old_actor.did and old_actor.did != did:
            logger.warning(
                f"DID mismatch for {old_actor_url}: Move carries {did}, "
                f"known identity is {old_actor.did}; migration refused"
            )
            return HandlerResult.ok(mode="did", migrated=0)

        affected = self.profiles.list_outbound_follows_to(old_actor_url)
        if not affected:
            logger.info(f"No local follows of {old_actor_url} to migrate")
            return HandlerResult.ok(mode="did", migrated=0)

        new_actor = self.directory.get_remote_actor(new_actor_url, refresh=True)
        if new_actor is None:
            logger.error(f"Could not fetch new actor {new_actor_url}; migration skipped")
            return HandlerResult.ok(mode="did", migrated=0)

        if new_actor.did and new_actor.did != did:
            logger.warning(
                f"DID mismatch for {new_actor_url}: Move carries {did}, "
                f"actor advertises {new_actor.did}; migration refused"
            )
            return HandlerResult.ok(mode="did", migrated=0)

        new_inbox = new_actor.delivery_inbox
        if not new_inbox:
            logger.error(f"New actor {new_actor_url} has no inbox")
            return HandlerResult.ok(mode="did", migrated=0)

        logger.info(f"Move carries DID {did}; migrating {len(affected)} local follows")
        migrated = skipped = failed = 0

        for edge in affected:
            try:
                follower = self.profiles.find_actor(edge.follower_id)
                private_key = self.keys.get_private_key(edge.follower_id)
                if follower is None or not private_key:
                    logger.warning(f"Follower {edge.follower_id} has no signing key; skipping")
                    skipped += 1
                    continue

                if self.profiles.find_outbound_follow(edge.follower_id, new_actor_url):
                    # Already following the new account; drop the stale edge.
                    self.profiles.delete_outbound_follow(edge.follower_id, old_actor_url)
                    skipped += 1
                    continue

                follow = build_follow(follower, new_actor_url, self.config, str(uuid.uuid4()))
                self.profiles.update_outbound_follow(replace(
                    edge,
                    target_actor_url=new_actor_url,
                    target_handle=new_actor.full_handle or edge.target_handle,
                    inbox_url=new_inbox,
                    activity_id=follow.id,
                    display_name=new_actor.display_name or edge.display_name,
                    avatar_url=new_actor.avatar_url or edge.avatar_url,
                    accepted=False,
                ))

                result = self.delivery.deliver_one(
                    follow, new_inbox, private_key, self.config.key_id(follower.handle)
                )
                if not result.success:
                    logger.warning(f"Follow to {new_actor_url} for {follower.handle} not delivered: {result.error}")
                migrated += 1
                logger.info(f"Migrated {follower.handle}'s follow to {new_actor_url}")
            except Exception:
                logger.exception(f"Error migrating follow edge {edge.edge_id}")
                failed += 1

        logger.info(f"DID migration complete: {migrated} migrated, {skipped} skipped, {failed} failed")
        return HandlerResult.ok(mode="did", migrated=migrated, skipped=skipped, failed=failed)

    def announce_move(self, handle: str, new_actor_url: str) -> HandlerResult:
        """
        Mark a local actor as moved and send a Move to its followers.

        The Move carries the actor's DID so followers on nodes with the
        extension migrate automatically.
        """
        actor = self.profiles.find_local_actor(handle)
        if actor is None:
            return HandlerResult.fail("User not found")
        if actor.moved_to:
            return HandlerResult.fail("Account already marked as moved")

        private_key = self.keys.get_private_key(actor.id)
        if not private_key:
            return HandlerResult.fail("Missing signing key")

        actor.moved_to = new_actor_url
        self.profiles.upsert_actor(actor)

        move = build_move(actor, actor.id, new_actor_url, self.config)
        inboxes = get_follower_inboxes(self.profiles, actor.id)
        report = self.delivery.deliver_to_followers(
            move, inboxes, private_key, self.config.key_id(actor.handle)
        )
        logger.info(f"{actor.full_handle} moved to {new_actor_url}; notified {report.delivered} inboxes")
        return HandlerResult.ok(activity_id=move.id, delivered=report.delivered, failed=report.failed)
