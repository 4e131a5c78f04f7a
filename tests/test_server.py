# tests/test_server.py
"""Tests for the HTTP surface, served on an ephemeral port."""

import json
import socket
from urllib.error import HTTPError
from urllib.request import Request, urlopen

import pytest

from fedengine.config import FederationConfig
from fedengine.server import FederationServer

from conftest import BOB_INBOX, BOB_URL, FakeClient, add_local_actor, remote_actor_document, signed_headers


@pytest.fixture
def node(profiles, posts, keys, alice_keys, bob_keys):
    config = FederationConfig(domain="a.example", port=0)
    client = FakeClient(config)
    client.serve_json(BOB_URL, remote_actor_document(BOB_URL, bob_keys[0], inbox=BOB_INBOX))
    add_local_actor("alice", config, profiles, keys, alice_keys)

    server = FederationServer(config, profiles=profiles, posts=posts, keys=keys, client=client)
    server.start_background()
    yield server
    server.stop()


def _get(node, path):
    url = f"http://127.0.0.1:{node.port}{path}"
    try:
        with urlopen(url, timeout=5) as response:
            return response.status, response.headers.get("Content-Type"), json.loads(response.read())
    except HTTPError as e:
        return e.code, e.headers.get("Content-Type"), json.loads(e.read())


def _post(node, path, body, headers=None):
    request = Request(f"http://127.0.0.1:{node.port}{path}", data=body, headers=headers or {}, method="POST")
    try:
        with urlopen(request, timeout=5) as response:
            return response.status
    except HTTPError as e:
        return e.code


def _follow():
    return {
        "id": "https://b.example/activities/follow-1",
        "type": "Follow",
        "actor": BOB_URL,
        "object": "https://a.example/users/alice",
    }


class TestDiscoveryRoutes:
    """Tests for WebFinger and actor documents."""

    def test_webfinger(self, node):
        status, content_type, doc = _get(node, "/.well-known/webfinger?resource=acct:alice@a.example")

        assert status == 200
        assert content_type == "application/jrd+json"
        assert doc["subject"] == "acct:alice@a.example"
        assert doc["links"][0]["href"] == "https://a.example/users/alice"

    def test_webfinger_unknown(self, node):
        assert _get(node, "/.well-known/webfinger?resource=acct:nobody@a.example")[0] == 404
        assert _get(node, "/.well-known/webfinger?resource=acct:alice@other.example")[0] == 404

    def test_webfinger_missing_resource(self, node):
        assert _get(node, "/.well-known/webfinger")[0] == 400

    def test_actor_document(self, node):
        status, content_type, doc = _get(node, "/users/alice")

        assert status == 200
        assert content_type == "application/activity+json"
        assert doc["id"] == "https://a.example/users/alice"
        assert doc["synapsis:did"].startswith("did:synapsis:")

    def test_unknown_actor(self, node):
        assert _get(node, "/users/nobody")[0] == 404

    def test_health(self, node):
        assert _get(node, "/health") == (200, "application/json", {"status": "ok"})


class TestInboxRoutes:
    """Tests for POSTs to the inboxes."""

    def test_shared_inbox_follow(self, node, profiles, bob_keys):
        data = _follow()
        headers, body = signed_headers(data, bob_keys[1], f"{BOB_URL}#main-key")

        assert _post(node, "/inbox", body, headers) == 202
        assert profiles.find_follow_edge("https://a.example/users/alice", BOB_URL) is not None
        assert node.client.delivered_types() == ["Accept"]

    def test_per_actor_inbox(self, node, bob_keys):
        data = _follow()
        headers, body = signed_headers(data, bob_keys[1], f"{BOB_URL}#main-key",
                                       url="https://a.example/users/alice/inbox")
        assert _post(node, "/users/alice/inbox", body, headers) == 202

    def test_unknown_actor_inbox(self, node):
        assert _post(node, "/users/nobody/inbox", b"{}", {"Content-Type": "application/activity+json"}) == 404

    def test_invalid_json(self, node):
        assert _post(node, "/inbox", b"not json") == 400

    def test_rejected_activity(self, node):
        body = json.dumps({"type": "Follow"}).encode()
        assert _post(node, "/inbox", body) == 400

    def test_unknown_route(self, node):
        assert _post(node, "/outbox", b"{}") == 404

    def test_negative_content_length(self, node):
        """A negative length is refused instead of reading until the client hangs up."""
        with socket.create_connection(("127.0.0.1", node.port), timeout=5) as sock:
            sock.sendall(
                b"POST /inbox HTTP/1.1\r\n"
                b"Host: a.example\r\n"
                b"Content-Type: application/activity+json\r\n"
                b"Content-Length: -1\r\n"
                b"\r\n"
                b"{}"
            )
            status_line = sock.makefile("rb").readline()
        assert status_line.split()[1] == b"400"
