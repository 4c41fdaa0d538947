from __future__ import annotations

import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

from postbox.cli import INSTANCE_LOCK_NAME, app
from postbox.lockfile import InstanceLock
from postbox.maildir import ensure_maildir_structure, inbox_new_dir, status_dir
from postbox.store import Store
from postbox.types import OutcomeStatus, PostRecord

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


def _write_config(tmp_path: Path, maildir: Path | None = None, extra: str = "") -> Path:
    lines = [f"root_dir: {tmp_path / 'state'}"]
    if maildir is not None:
        lines.append(f"maildir: {maildir}")
    lines.append("workers: 2")
    config = tmp_path / "config.yaml"
    config.write_text("\n".join(lines) + "\n" + extra, encoding="utf-8")
    return config


def _sample_message(path: Path, *, recipient: str = "blog@example.com", message_id: str = "<msg-1>") -> Path:
    contents = (
        "From: Alice <alice@example.com>\n"
        f"To: {recipient}\n"
        "Subject: First post\n"
        f"Message-ID: {message_id}\n"
        "\n"
        "Hello world"
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")
    return path


def test_process_delivers_post(tmp_path):
    config_path = _write_config(tmp_path)
    message_path = _sample_message(tmp_path / "sample.eml")

    result = runner.invoke(app, ["-c", str(config_path), "process", str(message_path)])

    assert result.exit_code == 0
    assert "Message-ID: <msg-1>" in result.stdout
    assert "Outcome: delivered" in result.stdout
    assert "record: #1" in result.stdout
    assert Store(tmp_path / "state").count("posts") == 1


def test_process_reports_bounce_with_exit_code(tmp_path):
    config_path = _write_config(tmp_path)
    message_path = _sample_message(tmp_path / "sample.eml", recipient="comment+9@example.com")

    result = runner.invoke(app, ["-c", str(config_path), "process", str(message_path)])

    assert result.exit_code == 1
    assert "Outcome: bounced" in result.stdout
    assert "reason: reference not found (reference_resolution)" in result.stdout


def test_process_missing_file_fails(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "process", str(tmp_path / "absent.eml")])

    assert result.exit_code == 1


def test_drain_files_messages_by_outcome(tmp_path):
    maildir = tmp_path / "Maildir"
    ensure_maildir_structure(maildir)
    config_path = _write_config(tmp_path, maildir)
    _sample_message(inbox_new_dir(maildir) / "one", message_id="<one>")
    _sample_message(inbox_new_dir(maildir) / "two", recipient="nobody@example.com", message_id="<two>")

    result = runner.invoke(app, ["-c", str(config_path), "drain"])

    assert result.exit_code == 0
    assert "Processed 2 message(s): delivered=1 bounced=1 failed=0 unreadable=0" in result.stdout
    assert list(inbox_new_dir(maildir).iterdir()) == []
    assert len(list(status_dir(maildir, OutcomeStatus.DELIVERED).iterdir())) == 1
    assert len(list(status_dir(maildir, OutcomeStatus.BOUNCED).iterdir())) == 1


def test_drain_requires_maildir(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "drain"])

    assert result.exit_code == 2
    assert "maildir" in result.output


def test_routes_lists_rules_in_order(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "routes"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[0] == "Routes (first match wins):"
    assert lines[1].strip().startswith("1. /blog@/i -> post")
    assert "comment (token group 1)" in lines[2]


def test_posts_lists_stored_posts(tmp_path):
    config_path = _write_config(tmp_path)
    store = Store(tmp_path / "state")
    store.create(PostRecord(title="Hello", author="alice@example.com", content="<p>Body text</p>"))

    result = runner.invoke(app, ["-c", str(config_path), "posts"])

    assert result.exit_code == 0
    assert "#1 Hello by alice@example.com" in result.stdout
    assert "comments: 0" in result.stdout
    assert "Body text" in result.stdout


def test_posts_when_empty(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "posts"])

    assert result.exit_code == 0
    assert "No posts yet." in result.stdout


def test_status_reports_store_counts(tmp_path):
    maildir = tmp_path / "Maildir"
    config_path = _write_config(tmp_path, maildir)

    result = runner.invoke(app, ["-c", str(config_path), "status"])

    assert result.exit_code == 0
    assert f"Maildir: {maildir}" in result.stdout
    assert "Workers: 2" in result.stdout
    assert "Routes: 2" in result.stdout
    assert "Posts: 0" in result.stdout


def test_invalid_config_exits_with_code_two(tmp_path):
    config_path = _write_config(tmp_path, extra="routes: []\n")

    result = runner.invoke(app, ["-c", str(config_path), "routes"])

    assert result.exit_code == 2
    assert "Configuration error" in result.output


def test_process_reports_unreadable_file(tmp_path, monkeypatch):
    config_path = _write_config(tmp_path)
    message_path = _sample_message(tmp_path / "sample.eml")

    def _denied(path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr("postbox.cli.read_message", _denied)

    result = runner.invoke(app, ["-c", str(config_path), "process", str(message_path)])

    assert result.exit_code == 1
    assert "Permission denied" in result.output
    assert not isinstance(result.exception, PermissionError)


def test_drain_refuses_to_run_alongside_another_consumer(tmp_path):
    maildir = tmp_path / "Maildir"
    ensure_maildir_structure(maildir)
    config_path = _write_config(tmp_path, maildir)
    waiting = _sample_message(inbox_new_dir(maildir) / "one")

    with InstanceLock(tmp_path / "state" / INSTANCE_LOCK_NAME):
        result = runner.invoke(app, ["-c", str(config_path), "drain"])

    assert result.exit_code == 1
    assert "Another Postbox process" in result.output
    assert waiting.exists()
    assert Store(tmp_path / "state").count("posts") == 0


def test_drain_releases_lock_when_done(tmp_path):
    maildir = tmp_path / "Maildir"
    ensure_maildir_structure(maildir)
    config_path = _write_config(tmp_path, maildir)

    first = runner.invoke(app, ["-c", str(config_path), "drain"])
    second = runner.invoke(app, ["-c", str(config_path), "drain"])

    assert first.exit_code == 0
    assert second.exit_code == 0
