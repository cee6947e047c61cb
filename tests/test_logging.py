import json

from loguru import logger

from takeoff.logging_config import JSONFormatter, setup_logging


def test_json_lines_carry_extra_fields(tmp_path):
    log_file = tmp_path / "logs" / "takeoff.log"
    setup_logging(level="DEBUG", json_format=True, log_file=log_file)
    logger.bind(document_id="doc-1").info("Opened {}", "plan.pdf")
    logger.complete()
    setup_logging()

    record = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
    assert record["message"] == "Opened plan.pdf"
    assert record["level"] == "INFO"
    assert record["document_id"] == "doc-1"


def test_formatter_escapes_braces():
    class _Level:
        name = "INFO"

    class _Time:
        def isoformat(self):
            return "2024-01-01T00:00:00"

    line = JSONFormatter()({"time": _Time(), "level": _Level(), "message": "{x}", "extra": {}})
    assert "{{x}}" in line
