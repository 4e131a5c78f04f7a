# fedengine/activitypub/delivery.py
"""
Outbound delivery of activities.

Each delivery is a signed POST of the activity JSON to one inbox. Fan-out
deduplicates inboxes (a shared inbox gets exactly one copy) and runs in
fixed-size batches on a worker pool; every recipient's outcome is
recorded independently and no failure aborts the batch.

There is no retry: a failed delivery is reported, not requeued.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..config import FederationConfig
from ..errors import FetchError
from ..http import ACTIVITY_JSON, FederationClient
from ..stores import ProfileStore
from .activity import Activity
from .signatures import sign_request

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of delivering to one inbox."""
    inbox: str
    success: bool
    status: Optional[int] = None
    error: Optional[str] = None


@dataclass
class FanoutReport:
    """Aggregate outcome of a fan-out."""
    delivered: int = 0
    failed: int = 0
    results: List[DeliveryResult] = field(default_factory=list)

    def add(self, result: DeliveryResult) -> None:
        self.results.append(result)
        if result.success:
            self.delivered += 1
        else:
            self.failed += 1


def unique_inboxes(inboxes: Iterable[str]) -> List[str]:
    """Drop empty and repeated inbox URLs, keeping first-seen order."""
    seen = set()
    unique = []
    for inbox in inboxes:
        if inbox and inbox not in seen:
            seen.add(inbox)
            unique.append(inbox)
    return unique


def get_follower_inboxes(profiles: ProfileStore, actor_id: str) -> List[str]:
    """
    Delivery inboxes for every remote follower of a local actor.

    Prefers each follower's shared inbox over its direct inbox.
    """
    followers = profiles.list_remote_followers(actor_id)
    return unique_inboxes(f.delivery_inbox for f in followers)


class Delivery:
    """
    Signs and sends activities to remote inboxes.

    Args:
        config: Node configuration (batch size)
        client: HTTP client used for the POSTs
    """

    def __init__(self, config: FederationConfig, client: FederationClient):
        self.client = client
        self.batch_size = config.delivery_batch_size

    def deliver_one(
        self,
        activity: Activity,
        target_inbox: str,
        private_key: str,
        key_id: str,
    ) -> DeliveryResult:
        """
        Deliver an activity to a single inbox.

        Non-2xx responses are failures carrying the status and response body.
        """
        body = json.dumps(activity.to_activitypub()).encode("utf-8")
        try:
            headers = sign_request("POST", target_inbox, body, private_key, key_id)
        except (ValueError, TypeError) as e:
            logger.error(f"Could not sign delivery to {target_inbox}: {e}")
            return DeliveryResult(inbox=target_inbox, success=False, error=f"Signing failed: {e}")

        headers.update({
            "Content-Type": ACTIVITY_JSON,
            "Accept": ACTIVITY_JSON,
        })

        try:
            response = self.client.request("POST", target_inbox, headers=headers, body=body)
        except FetchError as e:
            logger.warning(f"Delivery of {activity.id} to {target_inbox} failed: {e}")
            return DeliveryResult(inbox=target_inbox, success=False, error=str(e))

        if not response.ok:
            logger.warning(
                f"Delivery of {activity.id} to {target_inbox} failed: "
                f"{response.status} {response.text[:200]}"
            )
            return DeliveryResult(
                inbox=target_inbox,
                success=False,
                status=response.status,
                error=f"Delivery failed: {response.status} {response.text}",
            )

        logger.debug(f"Delivered {activity.id} to {target_inbox}")
        return DeliveryResult(inbox=target_inbox, success=True, status=response.status)

    def _deliver_safely(self, activity: Activity, inbox: str, private_key: str, key_id: str) -> DeliveryResult:
        try:
            return self.deliver_one(activity, inbox, private_key, key_id)
        except Exception as e:
            logger.exception(f"Unexpected error delivering to {inbox}")
            return DeliveryResult(inbox=inbox, success=False, error=str(e))

    def deliver_to_followers(
        self,
        activity: Activity,
        inboxes: Iterable[str],
        private_key: str,
        key_id: str,
    ) -> FanoutReport:
        """
        Deliver an activity to many inboxes.

        Inboxes are deduplicated, then delivered batch by batch with up to
        batch_size requests in flight.
        """
        targets = unique_inboxes(inboxes)
        report = FanoutReport()
        if not targets:
            return report

        with ThreadPoolExecutor(max_workers=min(self.batch_size, len(targets))) as pool:
            for start in range(0, len(targets), self.batch_size):
                batch = targets[start:start + self.batch_size]
                futures = [
                    pool.submit(self._deliver_safely, activity, inbox, private_key, key_id)
                    for inbox in batch
                ]
                for future in futures:
                    report.add(future.result())

        logger.info(
            f"Delivered {activity.activity_type} {activity.id}: "
            f"{report.delivered} ok, {report.failed} failed"
        )
        return report
