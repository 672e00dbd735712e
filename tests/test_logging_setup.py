import logging
from pathlib import Path

from subnetsync.core.logging_setup import build_logger


def test_logger_creates_file_and_redacts(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    logger = build_logger(
        name="ss_test1",
        run_id="run123",
        action="inventory",
        base_dir="logs",
        extra={"cluster": "c1"},
    )

    logger.info("hello Authorization: Bearer abc123")
    logger.error("password=secret-x, token: tkn999 | api_key=AKIA123")
    logger.warning("patch failed token=%s", "token=argsecret")

    app_log = Path("logs/app.log")
    assert app_log.exists()
    content = app_log.read_text(encoding="utf-8")
    assert "***REDACTED***" in content
    for secret in ("abc123", "secret-x", "tkn999", "AKIA123", "argsecret"):
        assert secret not in content
    assert "run=run123 action=inventory cluster=c1" in content


def test_component_loggers_share_handlers(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    build_logger(name="ss_test2", run_id="r42", action="cleanup", base_dir="logs")

    logging.getLogger("ss_test2.service").debug("debug-line-42")
    content = Path("logs/app.log").read_text(encoding="utf-8")
    assert "DEBUG" in content and "debug-line-42" in content
    # records from plain loggers get placeholder context
    assert "run=- action=- cluster=-" in content


def test_rebuilding_does_not_stack_handlers(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for _ in range(3):
        build_logger(name="ss_test3", run_id="r1", action="inventory", base_dir="logs")
    assert len(logging.getLogger("ss_test3").handlers) == 2
