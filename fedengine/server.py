# fedengine/server.py
"""
HTTP surface of a federation node.

Endpoints:
    GET  /.well-known/webfinger?resource=acct:user@domain - Discovery
    GET  /users/:handle        - Actor document
    POST /inbox                - Shared inbox
    POST /users/:handle/inbox  - Per-actor inbox
    GET  /health               - Liveness

Inbox POSTs answer 202 when the activity was applied (or ignored as a
duplicate), 400 when it was rejected, 404 for an unknown actor's inbox.
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from .activitypub.actor import ActorDirectory, to_actor_document
from .activitypub.delivery import Delivery
from .activitypub.inbox import InboxDispatcher
from .activitypub.migration import MigrationCoordinator
from .activitypub.outbox import Outbox
from .activitypub.webfinger import parse_webfinger_resource, webfinger_document
from .config import FederationConfig
from .http import ACTIVITY_JSON, FederationClient
from .stores import (
    FileKeyStore,
    JsonPostStore,
    JsonProfileStore,
    KeyStore,
    PostStore,
    ProfileStore,
)

logger = logging.getLogger(__name__)

JRD_JSON = "application/jrd+json"
MAX_BODY_BYTES = 1024 * 1024


class FederationServer:
    """
    A federation node: stores, engine components and the HTTP listener.

    Stores default to JSON files under config.store_dir (in memory when
    unset).

    Usage:
        server = FederationServer(FederationConfig(domain="a.example"))
        server.start()  # Blocking
    """

    def __init__(
        self,
        config: FederationConfig,
        profiles: Optional[ProfileStore] = None,
        posts: Optional[PostStore] = None,
        keys: Optional[KeyStore] = None,
        client: Optional[FederationClient] = None,
    ):
        self.config = config
        self.host = config.host
        self.port = config.port
        self.profiles = profiles or JsonProfileStore(config.store_dir)
        self.posts = posts or JsonPostStore(config.store_dir)
        self.keys = keys or FileKeyStore(config.store_dir)
        self.client = client or FederationClient(config)

        self.directory = ActorDirectory(config, self.client, self.profiles)
        self.delivery = Delivery(config, self.client)
        self.migration = MigrationCoordinator(
            config, self.directory, self.profiles, self.keys, self.delivery
        )
        self.dispatcher = InboxDispatcher(
            config, self.client, self.profiles, self.posts, self.keys,
            delivery=self.delivery, directory=self.directory, migration=self.migration,
        )
        self.outbox = Outbox(
            config, self.client, self.profiles, self.posts, self.keys,
            delivery=self.delivery, directory=self.directory,
        )
        self.httpd: Optional[ThreadingHTTPServer] = None

    def _create_handler(server_instance):
        """Create request handler with access to server instance."""

        class RequestHandler(BaseHTTPRequestHandler):
            server_ref = server_instance

            def log_message(self, format, *args):
                logger.debug(format % args)

            def _send_json(self, data: Any, status: int = 200, content_type: str = "application/json"):
                payload = json.dumps(data).encode()
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def _send_error(self, message: str, status: int = 400):
                self._send_json({"error": message}, status)

            def do_GET(self):
                parsed = urlparse(self.path)
                path = parsed.path.rstrip("/") or "/"
                node = self.server_ref

                if path == "/.well-known/webfinger":
                    resource = parse_qs(parsed.query).get("resource", [None])[0]
                    if not resource:
                        self._send_error("Missing resource parameter")
                        return
                    target = parse_webfinger_resource(resource)
                    if target is None or target[1].lower() != node.config.domain.lower():
                        self._send_error("Not found", 404)
                        return
                    actor = node.profiles.find_local_actor(target[0])
                    if actor is None:
                        self._send_error("Not found", 404)
                        return
                    self._send_json(webfinger_document(actor.handle, node.config), content_type=JRD_JSON)

                elif path.startswith("/users/") and path.count("/") == 2:
                    actor = node.profiles.find_local_actor(path[len("/users/"):])
                    if actor is None:
                        self._send_error("Not found", 404)
                        return
                    self._send_json(to_actor_document(actor, node.config), content_type=ACTIVITY_JSON)

                elif path == "/health":
                    self._send_json({"status": "ok"})

                else:
                    self._send_error("Not found", 404)

            def do_POST(self):
                path = urlparse(self.path).path
                node = self.server_ref

                if path == "/inbox":
                    pass
                elif path.startswith("/users/") and path.endswith("/inbox") and path.count("/") == 3:
                    handle = path.split("/")[2]
                    if node.profiles.find_local_actor(handle) is None:
                        self._send_error("User not found", 404)
                        return
                else:
                    self._send_error("Not found", 404)
                    return

                try:
                    content_length = int(self.headers.get("Content-Length", 0))
                except ValueError:
                    self._send_error("Invalid Content-Length")
                    return
                if content_length < 0:
                    self._send_error("Invalid Content-Length")
                    return
                if content_length > MAX_BODY_BYTES:
                    self._send_error("Payload too large", 413)
                    return

                body = self.rfile.read(content_length)
                try:
                    data = json.loads(body.decode("utf-8"))
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    self._send_error(f"Invalid JSON: {e}")
                    return

                result = node.dispatcher.process(data, dict(self.headers.items()), path, body=body)
                if result.success:
                    self._send_json({"status": "accepted"}, 202)
                else:
                    self._send_error(result.error or "Rejected", 400)

        return RequestHandler

    def bind(self) -> ThreadingHTTPServer:
        """Create the listening socket; port 0 picks a free port."""
        self.httpd = ThreadingHTTPServer((self.host, self.port), self._create_handler())
        self.port = self.httpd.server_address[1]
        return self.httpd

    def start(self):
        """Start the HTTP server (blocking)."""
        httpd = self.httpd or self.bind()
        logger.info(f"Federation server for {self.config.domain} on {self.host}:{self.port}")
        print(f"Federation server running on http://{self.host}:{self.port}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            httpd.server_close()

    def start_background(self) -> threading.Thread:
        """Start the server in a background thread."""
        if self.httpd is None:
            self.bind()
        thread = threading.Thread(target=self.httpd.serve_forever)
        thread.daemon = True
        thread.start()
        return thread

    def stop(self):
        if self.httpd is not None:
            self.httpd.shutdown()
            self.httpd.server_close()
            self.httpd = None
