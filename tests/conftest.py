# tests/conftest.py
"""Shared fixtures: a fake transport, a node config, stores and actors."""

import json
import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest

from fedengine.activitypub.actor import generate_did
from fedengine.activitypub.inbox import InboxDispatcher
from fedengine.activitypub.signatures import generate_keypair, sign_request
from fedengine.config import FederationConfig
from fedengine.errors import FetchError
from fedengine.http import FederationClient, HttpResponse
from fedengine.models import Actor
from fedengine.stores import FileKeyStore, JsonPostStore, JsonProfileStore

BOB_URL = "https://b.example/users/bob"
BOB_INBOX = "https://b.example/users/bob/inbox"
BOB_SHARED_INBOX = "https://b.example/inbox"


class FakeClient(FederationClient):
    """
    FederationClient with canned GET responses and recorded POSTs.

    Unrouted GETs answer 404; POSTs answer 202 unless overridden.
    """

    def __init__(self, config: FederationConfig):
        super().__init__(config)
        self.routes: Dict[str, Tuple[int, Any]] = {}
        self.post_status: Dict[str, int] = {}
        self.unreachable: set = set()
        self.gets: List[str] = []
        self.posted: List[Tuple[str, Dict[str, str], bytes]] = []
        self._lock = threading.Lock()

    def serve_json(self, url: str, data: Any, status: int = 200):
        self.routes[url] = (status, data)

    def request(self, method, url, headers=None, body=None):
        if url in self.unreachable:
            raise FetchError(f"{method} {url} failed: connection refused")

        if method == "GET":
            with self._lock:
                self.gets.append(url)
            status, data = self.routes.get(url, (404, {"error": "not found"}))
            return HttpResponse(status=status, body=json.dumps(data).encode())

        with self._lock:
            self.posted.append((url, dict(headers or {}), body or b""))
        status = self.post_status.get(url, 202)
        return HttpResponse(status=status, body=b"" if status < 300 else b"server error")

    def deliveries_to(self, url: str) -> List[Dict[str, Any]]:
        """Activities POSTed to an inbox, decoded."""
        return [json.loads(body) for target, _, body in self.posted if target == url]

    def delivered_types(self) -> List[str]:
        return [json.loads(body)["type"] for _, _, body in self.posted]


@pytest.fixture(scope="session")
def alice_keys():
    """(public, private) PEM pair for the local actor."""
    return generate_keypair()


@pytest.fixture(scope="session")
def bob_keys():
    """(public, private) PEM pair for the remote actor."""
    return generate_keypair()


@pytest.fixture
def config():
    return FederationConfig(domain="a.example")


@pytest.fixture
def client(config):
    return FakeClient(config)


@pytest.fixture
def profiles():
    return JsonProfileStore()


@pytest.fixture
def posts():
    return JsonPostStore()


@pytest.fixture
def keys():
    return FileKeyStore()


def add_local_actor(handle: str, config, profiles, keys, keypair) -> Actor:
    """Register a local actor using a pre-generated keypair."""
    public_pem, private_pem = keypair
    actor_url = config.actor_url(handle)
    actor = Actor(
        id=actor_url,
        handle=handle,
        domain=config.domain,
        display_name=handle.title(),
        inbox=f"{actor_url}/inbox",
        shared_inbox=config.shared_inbox_url,
        public_key=public_pem,
        did=generate_did(public_pem),
        local=True,
    )
    profiles.upsert_actor(actor)
    keys.put_private_key(actor.id, private_pem)
    return actor


def remote_actor_document(
    actor_url: str,
    public_pem: str,
    inbox: Optional[str] = None,
    shared_inbox: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    doc = {
        "@context": ["https://www.w3.org/ns/activitystreams"],
        "id": actor_url,
        "type": "Person",
        "preferredUsername": actor_url.rsplit("/", 1)[-1],
        "name": actor_url.rsplit("/", 1)[-1].title(),
        "inbox": inbox or f"{actor_url}/inbox",
        "publicKey": {
            "id": f"{actor_url}#main-key",
            "owner": actor_url,
            "publicKeyPem": public_pem,
        },
    }
    if shared_inbox:
        doc["endpoints"] = {"sharedInbox": shared_inbox}
    doc.update(extra)
    return doc


@pytest.fixture
def alice(config, profiles, keys, alice_keys):
    return add_local_actor("alice", config, profiles, keys, alice_keys)


@pytest.fixture
def bob_doc(client, bob_keys):
    """Bob's actor document, served by the fake transport."""
    doc = remote_actor_document(BOB_URL, bob_keys[0], inbox=BOB_INBOX, shared_inbox=BOB_SHARED_INBOX)
    client.serve_json(BOB_URL, doc)
    return doc


@pytest.fixture
def dispatcher(config, client, profiles, posts, keys):
    return InboxDispatcher(config, client, profiles, posts, keys)


def signed_headers(data: Dict[str, Any], private_pem: str, key_id: str,
                   url: str = "https://a.example/inbox") -> Tuple[Dict[str, str], bytes]:
    """Body and headers of a signed inbox POST."""
    body = json.dumps(data).encode()
    headers = sign_request("POST", url, body, private_pem, key_id)
    headers["Host"] = url.split("/")[2]
    headers["Content-Type"] = "application/activity+json"
    return headers, body


@pytest.fixture
def deliver_from_bob(dispatcher, bob_keys, bob_doc):
    """Process an activity as a correctly signed POST from Bob."""

    def deliver(data: Dict[str, Any], path: str = "/inbox"):
        headers, body = signed_headers(data, bob_keys[1], f"{BOB_URL}#main-key",
                                       url=f"https://a.example{path}")
        return dispatcher.process(data, headers, path, body=body)

    return deliver
