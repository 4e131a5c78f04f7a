# fedengine/activitypub/remote_posts.py
"""
Remote Notes in the local post cache.

Notes arrive either embedded in an inbound Create or are fetched on
demand by URL (a reply target, a post someone wants to like). Both paths
build the same CachedPost and insert it idempotently.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..http import FederationClient
from ..models import CachedPost
from ..stores import PostStore
from .activity import object_id
from .actor import ActorDirectory

logger = logging.getLogger(__name__)

MEDIA_ATTACHMENT_TYPES = {"Document", "Image", "Video"}


def media_from_attachments(attachments: Any) -> List[Dict[str, Any]]:
    if not isinstance(attachments, list):
        return []
    media = []
    for attachment in attachments:
        if not isinstance(attachment, dict):
            continue
        if attachment.get("type") not in MEDIA_ATTACHMENT_TYPES:
            continue
        url = attachment.get("url")
        if isinstance(url, dict):
            url = url.get("href")
        if not isinstance(url, str) or not url:
            continue
        media.append({
            "url": url,
            "alt_text": attachment.get("name"),
            "media_type": attachment.get("mediaType"),
        })
    return media


def handle_from_url(actor_url: str) -> str:
    """user@host from the last path segment of an actor URL."""
    parsed = urlparse(actor_url)
    parts = [p for p in parsed.path.split("/") if p]
    handle = parts[-1] if parts else "unknown"
    return f"{handle}@{parsed.hostname or 'unknown'}"


def cached_post_from_note(
    note: Dict[str, Any],
    directory: Optional[ActorDirectory] = None,
) -> Optional[CachedPost]:
    """
    Build a CachedPost from a Note object.

    The author's display name and avatar come from the directory when
    it can resolve them; the post is still built when it cannot.

    Returns:
        The post, or None when the Note lacks an id or attributedTo
    """
    ap_id = note.get("id")
    author_url = object_id(note.get("attributedTo"))
    if not isinstance(ap_id, str) or not ap_id or not author_url:
        return None

    author = directory.get_remote_actor(author_url) if directory is not None else None
    content = note.get("content")
    published = note.get("published")
    return CachedPost(
        ap_id=ap_id,
        author_handle=handle_from_url(author_url),
        author_actor_url=author_url,
        content=content if isinstance(content, str) else "",
        author_display_name=author.display_name if author else None,
        author_avatar_url=author.avatar_url if author else None,
        published_at=published if isinstance(published, str) else None,
        media=media_from_attachments(note.get("attachment")),
    )


def fetch_remote_post(
    client: FederationClient,
    posts: PostStore,
    directory: Optional[ActorDirectory],
    url: str,
) -> Optional[CachedPost]:
    """
    Return a remote Note from the cache, fetching and caching it if absent.

    The fetched document must be a Note whose id and author live on the
    host it was fetched from.

    Args:
        client: HTTP client for the fetch
        posts: Post store holding the cache
        directory: Author lookup for display name/avatar (optional)
        url: The Note's URL

    Returns:
        The cached post, or None when it could not be fetched or is not a Note
    """
    cached = posts.find_cached_post(url)
    if cached is not None:
        return cached

    doc = client.get_json(url)
    if doc is None:
        logger.warning(f"Could not fetch remote post {url}")
        return None

    if doc.get("type") != "Note":
        logger.warning(f"Remote object {url} is a {doc.get('type')}, not a Note")
        return None

    post = cached_post_from_note(doc, directory)
    if post is None:
        logger.warning(f"Remote post {url} missing id or attributedTo")
        return None

    host = urlparse(url).hostname
    if urlparse(post.ap_id).hostname != host or urlparse(post.author_actor_url).hostname != host:
        logger.warning(f"Remote post {url} claims id {post.ap_id} by {post.author_actor_url}; not cached")
        return None

    if post.ap_id != url:
        existing = posts.find_cached_post(post.ap_id)
        if existing is not None:
            return existing

    if not posts.insert_cached_post(post):
        return posts.find_cached_post(post.ap_id)

    logger.info(f"Cached remote post from {post.author_handle}: {post.ap_id}")
    return post
