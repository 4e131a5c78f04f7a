# fedengine/activitypub/webfinger.py
"""
WebFinger discovery.

Remote handles are resolved in two steps: the remote node's
/.well-known/webfinger endpoint maps acct:user@domain to a link document,
and the link with rel="self" and the activity media type points at the
Actor document, which is then fetched.

Every remote-facing function here degrades to None instead of raising.

See: https://www.rfc-editor.org/rfc/rfc7033
"""

import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, urlparse

from ..config import FederationConfig
from ..http import ACTIVITY_JSON, JRD_ACCEPT, FederationClient

logger = logging.getLogger(__name__)

PROFILE_PAGE_REL = "http://webfinger.net/rel/profile-page"


def parse_handle(handle: str) -> Optional[Tuple[str, str]]:
    """
    Split "@user@domain" or "user@domain" into (user, domain).

    Returns None if the handle is not in that form.
    """
    handle = handle.strip()
    if handle.startswith("acct:"):
        handle = handle[5:]
    handle = handle.lstrip("@")
    parts = handle.split("@")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def parse_webfinger_resource(resource: str) -> Optional[Tuple[str, str]]:
    """
    Parse a WebFinger resource query into (handle, domain).

    Accepts acct:user@domain and actor URLs of the form .../users/<handle>.
    """
    if resource.startswith("acct:"):
        return parse_handle(resource)

    parsed = urlparse(resource)
    if not parsed.scheme or not parsed.netloc:
        return None
    parts = parsed.path.split("/")
    if "users" in parts:
        index = parts.index("users")
        if index + 1 < len(parts) and parts[index + 1]:
            return parts[index + 1], parsed.netloc
    return None


def webfinger_document(handle: str, config: FederationConfig) -> Dict[str, Any]:
    """WebFinger response for a local actor."""
    actor_url = config.actor_url(handle)
    return {
        "subject": f"acct:{handle}@{config.domain}",
        "aliases": [actor_url],
        "links": [
            {
                "rel": "self",
                "type": ACTIVITY_JSON,
                "href": actor_url,
            },
            {
                "rel": PROFILE_PAGE_REL,
                "type": "text/html",
                "href": actor_url,
            },
        ],
    }


def fetch_webfinger(client: FederationClient, handle: str, domain: str) -> Optional[Dict[str, Any]]:
    """Fetch the WebFinger document for handle@domain."""
    resource = quote(f"acct:{handle}@{domain}", safe="")
    url = f"https://{domain}/.well-known/webfinger?resource={resource}"
    return client.get_json(url, accept=JRD_ACCEPT)


def actor_url_from_webfinger(doc: Dict[str, Any]) -> Optional[str]:
    """The href of the rel="self" activity+json link, if present."""
    links = doc.get("links")
    if not isinstance(links, list):
        return None
    for link in links:
        if not isinstance(link, dict):
            continue
        if link.get("rel") == "self" and link.get("type") == ACTIVITY_JSON:
            href = link.get("href")
            if isinstance(href, str) and href:
                return href
    return None


def fetch_actor_by_url(client: FederationClient, url: str) -> Optional[Dict[str, Any]]:
    """
    Fetch an Actor document directly.

    The document must carry at least an id and a type.
    """
    doc = client.get_json(url)
    if doc is None:
        return None
    if not isinstance(doc.get("id"), str) or not doc.get("type"):
        logger.warning(f"Actor document at {url} is missing id or type")
        return None
    return doc


def resolve_handle(client: FederationClient, handle: str, domain: str) -> Optional[Dict[str, Any]]:
    """
    Resolve handle@domain to its Actor document via WebFinger.

    Returns None if discovery fails at either step or the self link is
    absent.
    """
    doc = fetch_webfinger(client, handle, domain)
    if doc is None:
        logger.info(f"WebFinger lookup failed for {handle}@{domain}")
        return None

    actor_url = actor_url_from_webfinger(doc)
    if actor_url is None:
        logger.info(f"No activity+json self link for {handle}@{domain}")
        return None

    return fetch_actor_by_url(client, actor_url)
