# tests/test_cli.py
"""Tests for the command-line interface."""

import sys
import tempfile
from pathlib import Path

import pytest

from fedengine import cli
from fedengine.stores import FileKeyStore, JsonProfileStore


@pytest.fixture
def store_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["fedengine", *argv])
    cli.main()


class TestCli:
    """Tests for the sub-commands that need no network."""

    def test_keygen(self, monkeypatch, store_dir):
        run(monkeypatch, "keygen", "-o", str(store_dir / "keys"))

        assert (store_dir / "keys" / "public.pem").read_text().startswith("-----BEGIN PUBLIC KEY-----")
        assert (store_dir / "keys" / "private.pem").stat().st_mode & 0o077 == 0

    def test_create_actor(self, monkeypatch, store_dir, capsys):
        run(monkeypatch, "--domain", "a.example", "--store-dir", str(store_dir),
            "create-actor", "alice", "--name", "Alice")

        assert "alice@a.example" in capsys.readouterr().out
        actor = JsonProfileStore(store_dir).find_local_actor("alice")
        assert actor.display_name == "Alice"
        assert FileKeyStore(store_dir).get_private_key(actor.id) is not None

    def test_create_actor_twice(self, monkeypatch, store_dir):
        run(monkeypatch, "--domain", "a.example", "--store-dir", str(store_dir), "create-actor", "alice")
        with pytest.raises(SystemExit):
            run(monkeypatch, "--domain", "a.example", "--store-dir", str(store_dir), "create-actor", "alice")

    def test_config_file(self, monkeypatch, store_dir, capsys):
        config_path = store_dir / "node.yaml"
        config_path.write_text(f"domain: b.example\nstore_dir: {store_dir}\n")

        run(monkeypatch, "--config", str(config_path), "create-actor", "bob")
        assert "bob@b.example" in capsys.readouterr().out

    def test_move_unknown_user(self, monkeypatch, store_dir):
        with pytest.raises(SystemExit):
            run(monkeypatch, "--domain", "a.example", "--store-dir", str(store_dir),
                "move", "nobody", "https://c.example/users/nobody")

    def test_no_domain(self, monkeypatch):
        with pytest.raises(SystemExit):
            run(monkeypatch, "create-actor", "alice")

    def test_no_command(self, monkeypatch):
        with pytest.raises(SystemExit):
            run(monkeypatch)
