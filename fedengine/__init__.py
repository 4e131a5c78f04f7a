# fedengine - ActivityPub federation engine
#
# Lets a node exchange signed activities with other ActivityPub servers:
# discovery of remote actors, verified inbound processing, fan-out
# delivery, and DID-based account migration.
#
# Core concepts:
# - Actor: a local or cached remote identity
# - Activity: an immutable envelope (Create, Follow, Like, Move, ...)
# - InboxDispatcher: verifies and applies inbound activities
# - Delivery: signs and sends activities to remote inboxes
# - Stores: narrow interfaces over profiles, posts and keys

from .config import FederationConfig
from .errors import ActivityValidationError, FederationError, FetchError
from .http import FederationClient, HttpResponse
from .models import Actor, CachedPost, LocalPost, RemoteFollow, RemoteFollower
from .stores import (
    FileKeyStore,
    JsonPostStore,
    JsonProfileStore,
    KeyStore,
    PostStore,
    ProfileStore,
)

__all__ = [
    "FederationConfig",
    "FederationError",
    "FetchError",
    "ActivityValidationError",
    "FederationClient",
    "HttpResponse",
    "Actor",
    "CachedPost",
    "LocalPost",
    "RemoteFollow",
    "RemoteFollower",
    "ProfileStore",
    "PostStore",
    "KeyStore",
    "JsonProfileStore",
    "JsonPostStore",
    "FileKeyStore",
]

__version__ = "0.1.0"
