#!/usr/bin/env python3
"""
fedengine CLI

Command-line interface for running and administering a node:
  fedengine keygen - Generate an RSA keypair
  fedengine create-actor - Register a local actor
  fedengine resolve - Look up a remote actor via WebFinger
  fedengine serve - Run the HTTP server
  fedengine move - Migrate a local actor to a new account

Usage:
  fedengine keygen [-o <dir>]
  fedengine --config node.yaml create-actor <handle> [--name <display name>]
  fedengine --domain a.example resolve <user@domain>
  fedengine --config node.yaml serve [--host <host>] [--port <port>]
  fedengine --config node.yaml move <handle> <new actor url>
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .activitypub.actor import ActorDirectory, create_local_actor, to_actor_document
from .activitypub.signatures import generate_keypair
from .config import FederationConfig


def load_config(args) -> FederationConfig:
    """Config from --config, with --domain/--store-dir overriding it."""
    if args.config:
        config = FederationConfig.from_file(args.config)
        if args.domain:
            config.domain = args.domain
        if args.store_dir:
            config.store_dir = Path(args.store_dir)
        return config
    if not args.domain:
        print("Error: --config or --domain is required", file=sys.stderr)
        sys.exit(1)
    return FederationConfig(domain=args.domain, store_dir=args.store_dir)


def cmd_keygen(args):
    """Generate a keypair and print or save it."""
    public_pem, private_pem = generate_keypair()
    if not args.output:
        print(public_pem)
        print(private_pem)
        return

    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / "public.pem").write_text(public_pem)
    private_path = out_dir / "private.pem"
    private_path.write_text(private_pem)
    private_path.chmod(0o600)
    print(f"Keys written to {out_dir}")


def cmd_create_actor(args):
    """Register a local actor with a fresh keypair and DID."""
    from .stores import FileKeyStore, JsonProfileStore

    config = load_config(args)
    profiles = JsonProfileStore(config.store_dir)
    keys = FileKeyStore(config.store_dir)
    try:
        actor = create_local_actor(args.handle, config, profiles, keys,
                                   display_name=args.name, summary=args.summary)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Created {actor.full_handle}")
    print(f"  id:  {actor.id}")
    print(f"  did: {actor.did}")
    if args.json:
        print(json.dumps(to_actor_document(actor, config), indent=2))


def cmd_resolve(args):
    """Resolve a handle or actor URL and print the cached actor."""
    from .http import FederationClient
    from .stores import JsonProfileStore

    config = load_config(args)
    profiles = JsonProfileStore(config.store_dir)
    directory = ActorDirectory(config, FederationClient(config), profiles)

    actor = directory.resolve(args.target)
    if actor is None:
        print(f"Could not resolve {args.target}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps({
        "id": actor.id,
        "handle": actor.full_handle,
        "name": actor.display_name,
        "inbox": actor.inbox,
        "shared_inbox": actor.shared_inbox,
        "moved_to": actor.moved_to,
        "did": actor.did,
    }, indent=2))


def cmd_serve(args):
    """Run the node's HTTP server until interrupted."""
    from .server import FederationServer

    config = load_config(args)
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    FederationServer(config).start()


def cmd_move(args):
    """Mark a local actor as moved and notify its followers."""
    from .server import FederationServer

    config = load_config(args)
    node = FederationServer(config)
    result = node.migration.announce_move(args.handle, args.new_actor_url)
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)
    print(f"Move sent: {result.details['delivered']} delivered, {result.details['failed']} failed")


def main():
    parser = argparse.ArgumentParser(
        prog="fedengine",
        description="fedengine - ActivityPub federation node",
    )
    parser.add_argument("--config", help="Node config YAML file")
    parser.add_argument("--domain", help="Node domain (overrides config)")
    parser.add_argument("--store-dir", help="Store directory (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keygen command
    keygen_parser = subparsers.add_parser("keygen", help="Generate an RSA keypair")
    keygen_parser.add_argument("-o", "--output", help="Directory for public.pem/private.pem")

    # create-actor command
    create_parser = subparsers.add_parser("create-actor", help="Register a local actor")
    create_parser.add_argument("handle", help="Username")
    create_parser.add_argument("--name", help="Display name")
    create_parser.add_argument("--summary", help="Profile text")
    create_parser.add_argument("--json", action="store_true", help="Print the actor document")

    # resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve a remote actor")
    resolve_parser.add_argument("target", help="user@domain or actor URL")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, help="Port to bind to")

    # move command
    move_parser = subparsers.add_parser("move", help="Migrate a local actor")
    move_parser.add_argument("handle", help="Local username")
    move_parser.add_argument("new_actor_url", help="URL of the new account")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "keygen":
        cmd_keygen(args)
    elif args.command == "create-actor":
        cmd_create_actor(args)
    elif args.command == "resolve":
        cmd_resolve(args)
    elif args.command == "serve":
        cmd_serve(args)
    elif args.command == "move":
        cmd_move(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
