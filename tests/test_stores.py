# tests/test_stores.py
"""Tests for the JSON-backed stores."""

import stat
import tempfile
import threading
from pathlib import Path

import pytest

from fedengine.models import Actor, CachedPost, LocalPost, RemoteFollow, RemoteFollower
from fedengine.stores import FileKeyStore, JsonPostStore, JsonProfileStore

from conftest import BOB_INBOX, BOB_URL

ALICE_URL = "https://a.example/users/alice"


@pytest.fixture
def store_dir():
    """Create temporary store directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def _alice():
    return Actor(id=ALICE_URL, handle="alice", domain="a.example", local=True)


class TestProfileStore:
    """Tests for JsonProfileStore."""

    def test_find_local_case_insensitive(self):
        store = JsonProfileStore()
        store.upsert_actor(_alice())
        assert store.find_local_actor("ALICE").id == ALICE_URL

    def test_remote_not_found_as_local(self):
        store = JsonProfileStore()
        store.upsert_actor(Actor(id=BOB_URL, handle="bob", domain="b.example"))
        assert store.find_local_actor("bob") is None

    def test_returns_copies(self):
        """Mutating a returned actor does not change the store."""
        store = JsonProfileStore()
        store.upsert_actor(_alice())
        store.find_actor(ALICE_URL).followers_count = 99
        assert store.find_actor(ALICE_URL).followers_count == 0

    def test_remote_cannot_replace_local(self):
        store = JsonProfileStore()
        store.upsert_actor(_alice())
        with pytest.raises(ValueError):
            store.upsert_actor(Actor(id=ALICE_URL, handle="alice", domain="a.example"))

    def test_follow_edge_upsert(self):
        store = JsonProfileStore()
        first = RemoteFollower(ALICE_URL, BOB_URL, BOB_INBOX, activity_id="f1")
        assert store.upsert_follow_edge(first)
        assert not store.upsert_follow_edge(RemoteFollower(ALICE_URL, BOB_URL, BOB_INBOX, activity_id="f2"))

        edge = store.find_follow_edge(ALICE_URL, BOB_URL)
        assert edge.edge_id == first.edge_id
        assert edge.activity_id == "f2"
        assert store.find_follow_edge_by_activity("f2").actor_url == BOB_URL

    def test_follower_count_floor(self):
        store = JsonProfileStore()
        store.upsert_actor(_alice())
        assert store.increment_follower_count(ALICE_URL, 1) == 1
        assert store.increment_follower_count(ALICE_URL, -5) == 0

    def test_outbound_follow_lifecycle(self):
        store = JsonProfileStore()
        store.upsert_actor(_alice())
        edge = RemoteFollow(follower_id=ALICE_URL, target_actor_url=BOB_URL, inbox_url=BOB_INBOX)

        assert store.add_outbound_follow(edge)
        assert not store.add_outbound_follow(RemoteFollow(ALICE_URL, BOB_URL, BOB_INBOX))
        assert store.find_actor(ALICE_URL).following_count == 1
        assert [e.edge_id for e in store.list_outbound_follows_to(BOB_URL)] == [edge.edge_id]

        edge.accepted = True
        store.update_outbound_follow(edge)
        assert store.find_outbound_follow(ALICE_URL, BOB_URL).accepted

        assert store.delete_outbound_follow(ALICE_URL, BOB_URL)
        assert not store.delete_outbound_follow(ALICE_URL, BOB_URL)
        assert store.find_actor(ALICE_URL).following_count == 0

    def test_update_unknown_edge(self):
        with pytest.raises(ValueError):
            JsonProfileStore().update_outbound_follow(RemoteFollow(ALICE_URL, BOB_URL, BOB_INBOX))

    def test_persistence(self, store_dir):
        store = JsonProfileStore(store_dir)
        store.upsert_actor(_alice())
        store.upsert_follow_edge(RemoteFollower(ALICE_URL, BOB_URL, BOB_INBOX))
        store.add_outbound_follow(RemoteFollow(ALICE_URL, BOB_URL, BOB_INBOX))

        reloaded = JsonProfileStore(store_dir)
        assert reloaded.find_local_actor("alice") is not None
        assert reloaded.find_follow_edge(ALICE_URL, BOB_URL) is not None
        assert reloaded.find_outbound_follow(ALICE_URL, BOB_URL) is not None
        assert (store_dir / "profiles.json").exists()

    def test_concurrent_upsert_single_insert(self):
        """Racing inserts of the same edge report exactly one as new."""
        store = JsonProfileStore()
        results = []

        def insert():
            results.append(store.upsert_follow_edge(RemoteFollower(ALICE_URL, BOB_URL, BOB_INBOX)))

        threads = [threading.Thread(target=insert) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1


class TestPostStore:
    """Tests for JsonPostStore."""

    def test_local_post(self):
        store = JsonPostStore()
        post = LocalPost(post_id="p1", ap_id="https://a.example/posts/p1", author_id=ALICE_URL, content="x")
        store.insert_local_post(post)

        with pytest.raises(ValueError):
            store.insert_local_post(post)

        store.increment_like_count(post.ap_id, 1)
        store.increment_repost_count(post.ap_id, -1)
        found = store.find_local_post(post.ap_id)
        assert found.likes_count == 1
        assert found.reposts_count == 0

        assert store.delete_local_post(post.ap_id)
        assert not store.delete_local_post(post.ap_id)

    def test_cached_post(self):
        store = JsonPostStore()
        post = CachedPost(ap_id="n1", author_handle="bob@b.example", author_actor_url=BOB_URL, content="x")
        assert store.insert_cached_post(post)
        assert not store.insert_cached_post(post)
        assert store.delete_cached_post("n1")
        assert not store.delete_cached_post("n1")

    def test_interactions(self):
        store = JsonPostStore()
        assert store.record_interaction("Like", "p", BOB_URL)
        assert not store.record_interaction("Like", "p", BOB_URL)
        assert store.record_interaction("Announce", "p", BOB_URL)
        assert store.remove_interaction("Like", "p", BOB_URL)
        assert not store.remove_interaction("Like", "p", BOB_URL)

    def test_persistence(self, store_dir):
        store = JsonPostStore(store_dir)
        store.insert_cached_post(CachedPost(
            ap_id="n1", author_handle="bob@b.example", author_actor_url=BOB_URL, content="x",
            media=[{"url": "https://b.example/m.png", "alt_text": None, "media_type": None}],
        ))
        store.record_interaction("Like", "p", BOB_URL)

        reloaded = JsonPostStore(store_dir)
        assert reloaded.find_cached_post("n1").media[0]["url"] == "https://b.example/m.png"
        assert not reloaded.record_interaction("Like", "p", BOB_URL)


class TestKeyStore:
    """Tests for FileKeyStore."""

    def test_memory(self):
        store = FileKeyStore()
        assert store.get_private_key(ALICE_URL) is None
        store.put_private_key(ALICE_URL, "pem")
        assert store.get_private_key(ALICE_URL) == "pem"

    def test_persisted_private(self, store_dir):
        FileKeyStore(store_dir).put_private_key(ALICE_URL, "pem")

        files = list((store_dir / "keys").glob("*.pem"))
        assert len(files) == 1
        assert stat.S_IMODE(files[0].stat().st_mode) == 0o600
        assert FileKeyStore(store_dir).get_private_key(ALICE_URL) == "pem"

    def test_rewrite_keeps_private(self, store_dir):
        """Replacing a key truncates the file and keeps it owner-only."""
        store = FileKeyStore(store_dir)
        store.put_private_key(ALICE_URL, "old-pem-with-longer-content")
        store.put_private_key(ALICE_URL, "new")

        path = next((store_dir / "keys").glob("*.pem"))
        assert path.read_text() == "new"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
