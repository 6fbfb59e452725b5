import json
import logging
from pathlib import Path

from pub_export.config import LoggingConfig
from pub_export.logging_utils import log_event, setup_logging


def test_jsonl_file_logging_includes_event_fields(tmp_path: Path) -> None:
    cfg = LoggingConfig(console=False, file=True, format="jsonl", filename="export.jsonl")
    logger = setup_logging(cfg, tmp_path)

    log_event(logger, "Output written", event="output_written", path="out/Sample.epub")
    for handler in logger.handlers:
        handler.flush()

    lines = (tmp_path / "export.jsonl").read_text(encoding="utf-8").splitlines()
    payload = json.loads(lines[-1])
    assert payload["message"] == "Output written"
    assert payload["event"] == "output_written"
    assert payload["path"] == "out/Sample.epub"
    assert payload["level"] == "INFO"


def test_setup_logging_replaces_previous_handlers(tmp_path: Path) -> None:
    cfg = LoggingConfig(console=True, file=False)

    setup_logging(cfg, tmp_path)
    logger = setup_logging(cfg, tmp_path)

    assert len(logger.handlers) == 1
    assert not (tmp_path / cfg.filename).exists()


def test_log_event_without_logger_is_noop() -> None:
    log_event(None, "ignored", level=logging.ERROR, event="noop")
