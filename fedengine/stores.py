# fedengine/stores.py
"""
Collaborator stores used by the federation engine.

The engine only talks to the narrow interfaces defined here:
- ProfileStore: local and cached remote actors, follow edges
- PostStore: local posts, cached remote posts, interaction counters
- KeyStore: per-actor private keys

The bundled implementations keep everything in memory and, when given a
store_dir, persist to JSON files:

    store_dir/
        profiles.json
        posts.json
        keys/
            <sha256 of actor id>.pem

Every existence-check-then-write runs under the store's lock so duplicate
deliveries racing each other cannot both insert.
"""

import hashlib
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import Actor, CachedPost, LocalPost, RemoteFollow, RemoteFollower

logger = logging.getLogger(__name__)


class ProfileStore(ABC):
    """Actors and follow edges."""

    @abstractmethod
    def find_actor(self, actor_id: str) -> Optional[Actor]:
        """Find an actor (local or cached remote) by URL."""

    @abstractmethod
    def find_local_actor(self, handle: str) -> Optional[Actor]:
        """Find a local actor by handle (case-insensitive)."""

    @abstractmethod
    def upsert_actor(self, actor: Actor) -> None:
        """Insert or replace an actor."""

    @abstractmethod
    def find_follow_edge(self, local_actor_id: str, actor_url: str) -> Optional[RemoteFollower]:
        """Find the edge for a remote actor following a local actor."""

    @abstractmethod
    def find_follow_edge_by_activity(self, activity_id: str) -> Optional[RemoteFollower]:
        """Find a remote->local edge by the Follow activity that created it."""

    @abstractmethod
    def upsert_follow_edge(self, edge: RemoteFollower) -> bool:
        """Store a remote->local edge. Returns True if it did not exist."""

    @abstractmethod
    def delete_follow_edge(self, local_actor_id: str, actor_url: str) -> bool:
        """Delete a remote->local edge. Returns True if one was removed."""

    @abstractmethod
    def list_remote_followers(self, local_actor_id: str) -> List[RemoteFollower]:
        """All remote followers of a local actor."""

    @abstractmethod
    def increment_follower_count(self, actor_id: str, delta: int = 1) -> int:
        """Adjust an actor's follower count (floored at zero); returns the new value."""

    @abstractmethod
    def find_outbound_follow(self, follower_id: str, target_url: str) -> Optional[RemoteFollow]:
        """Find a local->remote edge."""

    @abstractmethod
    def add_outbound_follow(self, edge: RemoteFollow) -> bool:
        """Store a local->remote edge. Returns True if it did not exist."""

    @abstractmethod
    def update_outbound_follow(self, edge: RemoteFollow) -> None:
        """Rewrite a local->remote edge in place, matched by edge_id."""

    @abstractmethod
    def delete_outbound_follow(self, follower_id: str, target_url: str) -> bool:
        """Delete a local->remote edge. Returns True if one was removed."""

    @abstractmethod
    def list_outbound_follows_to(self, target_url: str) -> List[RemoteFollow]:
        """All local->remote edges targeting a remote actor."""


class PostStore(ABC):
    """Local posts and the remote content cache."""

    @abstractmethod
    def find_local_post(self, ap_id: str) -> Optional[LocalPost]:
        pass

    @abstractmethod
    def insert_local_post(self, post: LocalPost) -> None:
        pass

    @abstractmethod
    def delete_local_post(self, ap_id: str) -> bool:
        pass

    @abstractmethod
    def find_cached_post(self, ap_id: str) -> Optional[CachedPost]:
        pass

    @abstractmethod
    def insert_cached_post(self, post: CachedPost) -> bool:
        """Cache a remote post. Returns False if ap_id is already cached."""

    @abstractmethod
    def delete_cached_post(self, ap_id: str) -> bool:
        pass

    @abstractmethod
    def record_interaction(self, kind: str, ap_id: str, actor_url: str) -> bool:
        """Record a Like/Announce by actor_url. Returns True if new."""

    @abstractmethod
    def remove_interaction(self, kind: str, ap_id: str, actor_url: str) -> bool:
        """Remove a recorded Like/Announce. Returns True if it existed."""

    @abstractmethod
    def increment_like_count(self, ap_id: str, delta: int = 1) -> None:
        pass

    @abstractmethod
    def increment_repost_count(self, ap_id: str, delta: int = 1) -> None:
        pass


class KeyStore(ABC):
    """Private keys of local actors."""

    @abstractmethod
    def get_private_key(self, actor_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def put_private_key(self, actor_id: str, private_key_pem: str) -> None:
        pass


class _JsonFile:
    """Load/save a JSON document, or do nothing when path is None."""

    def __init__(self, path: Optional[Path]):
        self.path = path
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Dict:
        if self.path is None or not self.path.exists():
            return {}
        with open(self.path) as f:
            return json.load(f)

    def save(self, data: Dict) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)


class JsonProfileStore(ProfileStore):
    """
    ProfileStore backed by memory and, optionally, profiles.json.

    Args:
        store_dir: Directory to persist to (None for in-memory only)
    """

    def __init__(self, store_dir: Path | str | None = None):
        self._file = _JsonFile(Path(store_dir) / "profiles.json" if store_dir else None)
        self._lock = threading.RLock()
        self._actors: Dict[str, Actor] = {}
        self._followers: Dict[Tuple[str, str], RemoteFollower] = {}
        self._follows: Dict[str, RemoteFollow] = {}
        self._load()

    def _load(self):
        data = self._file.load()
        for actor_data in data.get("actors", []):
            actor = Actor.from_dict(actor_data)
            self._actors[actor.id] = actor
        for edge_data in data.get("followers", []):
            edge = RemoteFollower.from_dict(edge_data)
            self._followers[(edge.local_actor_id, edge.actor_url)] = edge
        for edge_data in data.get("follows", []):
            edge = RemoteFollow.from_dict(edge_data)
            self._follows[edge.edge_id] = edge

    def _save(self):
        self._file.save({
            "version": "1.0",
            "actors": [a.to_dict() for a in self._actors.values()],
            "followers": [e.to_dict() for e in self._followers.values()],
            "follows": [e.to_dict() for e in self._follows.values()],
        })

    def find_actor(self, actor_id: str) -> Optional[Actor]:
        with self._lock:
            actor = self._actors.get(actor_id)
            return replace(actor) if actor else None

    def find_local_actor(self, handle: str) -> Optional[Actor]:
        handle = handle.lower()
        with self._lock:
            for actor in self._actors.values():
                if actor.local and actor.handle.lower() == handle:
                    return replace(actor)
        return None

    def upsert_actor(self, actor: Actor) -> None:
        with self._lock:
            existing = self._actors.get(actor.id)
            if existing is not None and existing.local and not actor.local:
                raise ValueError(f"Refusing to overwrite local actor {actor.id} with a remote copy")
            self._actors[actor.id] = replace(actor)
            self._save()

    def find_follow_edge(self, local_actor_id: str, actor_url: str) -> Optional[RemoteFollower]:
        with self._lock:
            edge = self._followers.get((local_actor_id, actor_url))
            return replace(edge) if edge else None

    def find_follow_edge_by_activity(self, activity_id: str) -> Optional[RemoteFollower]:
        with self._lock:
            for edge in self._followers.values():
                if edge.activity_id == activity_id:
                    return replace(edge)
        return None

    def upsert_follow_edge(self, edge: RemoteFollower) -> bool:
        key = (edge.local_actor_id, edge.actor_url)
        with self._lock:
            existing = self._followers.get(key)
            if existing is not None:
                # Keep edge identity; refresh delivery details.
                self._followers[key] = replace(edge, edge_id=existing.edge_id,
                                               created_at=existing.created_at)
                self._save()
                return False
            self._followers[key] = replace(edge)
            self._save()
            return True

    def delete_follow_edge(self, local_actor_id: str, actor_url: str) -> bool:
        with self._lock:
            removed = self._followers.pop((local_actor_id, actor_url), None)
            if removed is not None:
                self._save()
            return removed is not None

    def list_remote_followers(self, local_actor_id: str) -> List[RemoteFollower]:
        with self._lock:
            return [
                replace(e) for e in self._followers.values()
                if e.local_actor_id == local_actor_id
            ]

    def increment_follower_count(self, actor_id: str, delta: int = 1) -> int:
        with self._lock:
            actor = self._actors.get(actor_id)
            if actor is None:
                return 0
            actor.followers_count = max(0, actor.followers_count + delta)
            self._save()
            return actor.followers_count

    def find_outbound_follow(self, follower_id: str, target_url: str) -> Optional[RemoteFollow]:
        with self._lock:
            for edge in self._follows.values():
                if edge.follower_id == follower_id and edge.target_actor_url == target_url:
                    return replace(edge)
        return None

    def add_outbound_follow(self, edge: RemoteFollow) -> bool:
        with self._lock:
            if self.find_outbound_follow(edge.follower_id, edge.target_actor_url):
                return False
            self._follows[edge.edge_id] = replace(edge)
            actor = self._actors.get(edge.follower_id)
            if actor is not None:
                actor.following_count += 1
            self._save()
            return True

    def update_outbound_follow(self, edge: RemoteFollow) -> None:
        with self._lock:
            if edge.edge_id not in self._follows:
                raise ValueError(f"Unknown follow edge {edge.edge_id}")
            self._follows[edge.edge_id] = replace(edge)
            self._save()

    def delete_outbound_follow(self, follower_id: str, target_url: str) -> bool:
        with self._lock:
            edge = self.find_outbound_follow(follower_id, target_url)
            if edge is None:
                return False
            del self._follows[edge.edge_id]
            actor = self._actors.get(follower_id)
            if actor is not None:
                actor.following_count = max(0, actor.following_count - 1)
            self._save()
            return True

    def list_outbound_follows_to(self, target_url: str) -> List[RemoteFollow]:
        with self._lock:
            return [
                replace(e) for e in self._follows.values()
                if e.target_actor_url == target_url
            ]


class JsonPostStore(PostStore):
    """PostStore backed by memory and, optionally, posts.json."""

    def __init__(self, store_dir: Path | str | None = None):
        self._file = _JsonFile(Path(store_dir) / "posts.json" if store_dir else None)
        self._lock = threading.RLock()
        self._local: Dict[str, LocalPost] = {}
        self._cached: Dict[str, CachedPost] = {}
        self._interactions: set = set()
        self._load()

    def _load(self):
        data = self._file.load()
        for post_data in data.get("local", []):
            post = LocalPost.from_dict(post_data)
            self._local[post.ap_id] = post
        for post_data in data.get("cached", []):
            post = CachedPost.from_dict(post_data)
            self._cached[post.ap_id] = post
        self._interactions = {tuple(i) for i in data.get("interactions", [])}

    def _save(self):
        self._file.save({
            "version": "1.0",
            "local": [p.to_dict() for p in self._local.values()],
            "cached": [p.to_dict() for p in self._cached.values()],
            "interactions": sorted(list(i) for i in self._interactions),
        })

    def find_local_post(self, ap_id: str) -> Optional[LocalPost]:
        with self._lock:
            post = self._local.get(ap_id)
            return replace(post) if post else None

    def insert_local_post(self, post: LocalPost) -> None:
        with self._lock:
            if post.ap_id in self._local:
                raise ValueError(f"Post {post.ap_id} already exists")
            self._local[post.ap_id] = replace(post)
            self._save()

    def delete_local_post(self, ap_id: str) -> bool:
        with self._lock:
            removed = self._local.pop(ap_id, None)
            if removed is None:
                return False
            self._interactions = {i for i in self._interactions if i[1] != ap_id}
            self._save()
            return True

    def find_cached_post(self, ap_id: str) -> Optional[CachedPost]:
        with self._lock:
            post = self._cached.get(ap_id)
            return replace(post) if post else None

    def insert_cached_post(self, post: CachedPost) -> bool:
        with self._lock:
            if post.ap_id in self._cached:
                return False
            self._cached[post.ap_id] = replace(post)
            self._save()
            return True

    def delete_cached_post(self, ap_id: str) -> bool:
        with self._lock:
            removed = self._cached.pop(ap_id, None)
            if removed is not None:
                self._save()
            return removed is not None

    def record_interaction(self, kind: str, ap_id: str, actor_url: str) -> bool:
        key = (kind, ap_id, actor_url)
        with self._lock:
            if key in self._interactions:
                return False
            self._interactions.add(key)
            self._save()
            return True

    def remove_interaction(self, kind: str, ap_id: str, actor_url: str) -> bool:
        key = (kind, ap_id, actor_url)
        with self._lock:
            if key not in self._interactions:
                return False
            self._interactions.discard(key)
            self._save()
            return True

    def increment_like_count(self, ap_id: str, delta: int = 1) -> None:
        with self._lock:
            post = self._local.get(ap_id)
            if post is not None:
                post.likes_count = max(0, post.likes_count + delta)
                self._save()

    def increment_repost_count(self, ap_id: str, delta: int = 1) -> None:
        with self._lock:
            post = self._local.get(ap_id)
            if post is not None:
                post.reposts_count = max(0, post.reposts_count + delta)
                self._save()


class FileKeyStore(KeyStore):
    """
    KeyStore holding PEM private keys, one file per actor when persisted.

    Key files are written owner read/write only.
    """

    def __init__(self, store_dir: Path | str | None = None):
        self.keys_dir = Path(store_dir) / "keys" if store_dir else None
        if self.keys_dir is not None:
            self.keys_dir.mkdir(parents=True, exist_ok=True)
        self._keys: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _key_path(self, actor_id: str) -> Path:
        name = hashlib.sha256(actor_id.encode()).hexdigest()
        return self.keys_dir / f"{name}.pem"

    def get_private_key(self, actor_id: str) -> Optional[str]:
        with self._lock:
            if actor_id in self._keys:
                return self._keys[actor_id]
            if self.keys_dir is None:
                return None
            path = self._key_path(actor_id)
            if not path.exists():
                return None
            pem = path.read_text()
            self._keys[actor_id] = pem
            return pem

    def put_private_key(self, actor_id: str, private_key_pem: str) -> None:
        with self._lock:
            self._keys[actor_id] = private_key_pem
            if self.keys_dir is not None:
                path = self._key_path(actor_id)
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "w") as f:
                    f.write(private_key_pem)
                os.chmod(path, 0o600)
