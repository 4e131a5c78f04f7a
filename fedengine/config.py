# fedengine/config.py
"""
Node configuration.

A single FederationConfig is built at startup and passed to every
component. All URLs the node emits are derived from it.

Example YAML:

    domain: a.example
    store_dir: /var/lib/fedengine
    http_timeout: 10
    require_signatures: false
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_USER_AGENT = "fedengine/0.1.0"


@dataclass
class FederationConfig:
    """
    Configuration for one federation node.

    Attributes:
        domain: Node domain (host[:port]) used in every actor/activity URL
        scheme: URL scheme for local URLs
        user_agent: User-Agent sent on outbound requests
        http_timeout: Per-request timeout in seconds
        delivery_batch_size: Concurrent deliveries per fan-out batch
        require_signatures: Reject inbound activities that fail verification
        store_dir: Directory for the JSON stores (None keeps them in memory)
        host: Bind address for the bundled HTTP server
        port: Bind port for the bundled HTTP server
    """
    domain: str
    scheme: str = "https"
    user_agent: str = DEFAULT_USER_AGENT
    http_timeout: float = 10.0
    delivery_batch_size: int = 10
    require_signatures: bool = False
    store_dir: Optional[Path] = None
    host: str = "127.0.0.1"
    port: int = 8080

    def __post_init__(self):
        if not self.domain:
            raise ValueError("domain is required")
        if self.delivery_batch_size < 1:
            raise ValueError("delivery_batch_size must be at least 1")
        if self.store_dir is not None:
            self.store_dir = Path(self.store_dir)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.domain}"

    @property
    def shared_inbox_url(self) -> str:
        return f"{self.base_url}/inbox"

    def actor_url(self, handle: str) -> str:
        return f"{self.base_url}/users/{handle}"

    def key_id(self, handle: str) -> str:
        """Key ID for HTTP Signatures."""
        return f"{self.actor_url(handle)}#main-key"

    def activity_url(self, activity_id: str) -> str:
        return f"{self.base_url}/activities/{activity_id}"

    def post_url(self, post_id: str) -> str:
        return f"{self.base_url}/posts/{post_id}"

    def handle_from_actor_url(self, url: str) -> Optional[str]:
        """Return the local handle for one of this node's actor URLs."""
        prefix = f"{self.base_url}/users/"
        if not url.startswith(prefix):
            return None
        handle = url[len(prefix):]
        if not handle or "/" in handle:
            return None
        return handle.lower()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FederationConfig":
        """Build a config from a parsed mapping; unknown keys are ignored."""
        if not data or not data.get("domain"):
            raise ValueError("Config must define 'domain'")
        return cls(
            domain=data["domain"],
            scheme=data.get("scheme", "https"),
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
            http_timeout=float(data.get("http_timeout", 10.0)),
            delivery_batch_size=int(data.get("delivery_batch_size", 10)),
            require_signatures=bool(data.get("require_signatures", False)),
            store_dir=data.get("store_dir"),
            host=data.get("host", "127.0.0.1"),
            port=int(data.get("port", 8080)),
        )

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "FederationConfig":
        """Parse config from YAML string."""
        return cls.from_dict(yaml.safe_load(yaml_content) or {})

    @classmethod
    def from_file(cls, path: Path | str) -> "FederationConfig":
        """Load config from YAML file."""
        with open(path, "r") as f:
            return cls.from_yaml(f.read())
