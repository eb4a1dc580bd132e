"""Tests for the command line entry point (dry-run transport only)."""

from datetime import timedelta

import pytest

from conftest import NOW
from social_dispatch.cli import main
from social_dispatch.config import load_config
from social_dispatch.factory import build_stores
from social_dispatch.models import Connection, Platform, Post, PostState


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"live_mode: false\n"
        f"data_dir: {tmp_path / 'data'}\n"
        f"delivery_log_path: {tmp_path / 'delivery_log.json'}\n",
        encoding="utf-8",
    )
    stores = build_stores(load_config(path))
    stores.connections.put(Connection("org1", Platform.TWITTER, "tw1", "tw-token", created_at=NOW))
    stores.posts.save(Post(
        "p1", "org1",
        payloads={Platform.TWITTER: "Hello"},
        state=PostState.SCHEDULED,
        scheduled_for=NOW - timedelta(days=2000),
    ))
    stores.posts.save(Post("p2", "org1", payloads={Platform.LINKEDIN: "No connection"}))
    return path


def test_no_command_prints_help(capsys):
    main([])
    assert "usage" in capsys.readouterr().out


def test_status(config_path, capsys):
    main(["--config", str(config_path), "status"])
    out = capsys.readouterr().out
    assert "Live mode: False" in out
    assert "LinkedIn OAuth: not configured" in out


def test_publish(config_path, capsys):
    main(["--config", str(config_path), "publish", "p1"])
    out = capsys.readouterr().out
    assert "Post p1 -> published" in out
    assert "[OK] twitter" in out


def test_publish_failure_exits_nonzero(config_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(config_path), "publish", "p2"])
    assert exc_info.value.code == 1
    assert "[FAILED] linkedin: No connection found for linkedin" in capsys.readouterr().out


def test_publish_unknown_post(config_path, capsys):
    with pytest.raises(SystemExit):
        main(["--config", str(config_path), "publish", "missing"])
    assert "Error: Post not found" in capsys.readouterr().err


def test_publish_unknown_platform(config_path, capsys):
    with pytest.raises(SystemExit):
        main(["--config", str(config_path), "publish", "p1", "--platforms", "twitter,myspace"])
    assert "Unsupported platform: myspace" in capsys.readouterr().err


def test_run_due(config_path, capsys):
    main(["--config", str(config_path), "run-due"])
    out = capsys.readouterr().out
    assert "Processed 1 post(s): 1 published" in out


def test_log_after_publish(config_path, capsys):
    main(["--config", str(config_path), "publish", "p1"])
    capsys.readouterr()
    main(["--config", str(config_path), "log"])
    out = capsys.readouterr().out
    assert "All records: 1" in out
    assert "[success] twitter / p1" in out


def test_tokens(config_path, capsys):
    main(["--config", str(config_path), "tokens", "--org", "org1"])
    out = capsys.readouterr().out
    assert "Connections for org1: 1" in out
    assert "twitter / tw1: expires never" in out
