# tests/unit/test_logger.py
"""
Unit tests for StructuredLogger and its formatters
"""
import json
import logging

import pytest

from monitoring.logger import EVALUATION_LOG, ColoredFormatter, JsonFormatter, StructuredLogger


def make_record(level=logging.INFO, msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("test", level, __file__, 10, msg, None, None, func="fn")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestFormatters:
    """Test cases for log formatters"""

    def test_json_formatter_fields(self):
        output = json.loads(JsonFormatter().format(make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "test"
        assert output["message"] == "hello"
        assert output["function"] == "fn"

    def test_json_formatter_structured_data(self):
        record = make_record(evaluation_data={"address": "0xabc", "score": 50.0})

        output = json.loads(JsonFormatter().format(record))

        assert output["evaluation"] == {"address": "0xabc", "score": 50.0}
        assert "error" not in output

    def test_colored_formatter_restores_levelname(self):
        record = make_record(level=logging.WARNING)

        text = ColoredFormatter().format(record)

        assert "WARNING" in text
        assert record.levelname == "WARNING"


@pytest.mark.unit
class TestStructuredLogger:
    """Test cases for the structured logger"""

    @pytest.fixture
    def structured_logger(self, tmp_path, restore_root_logger):
        return StructuredLogger(
            name="test_engine",
            config={"log_dir": str(tmp_path), "outputs": ["file"], "format": "json"}
        )

    def read_lines(self, tmp_path, name="test_engine.log"):
        return [json.loads(line) for line in (tmp_path / name).read_text().splitlines() if line]

    def test_log_evaluation(self, structured_logger, tmp_path):
        structured_logger.log_evaluation({
            "address": "0xabc",
            "success": True,
            "score": 72.5,
            "chains": [1, 8453],
            "failures": [],
            "duration": 0.123456
        })

        [entry] = self.read_lines(tmp_path)
        assert entry["level"] == logging.getLevelName(EVALUATION_LOG)
        assert entry["evaluation"]["score"] == 72.5
        assert entry["evaluation"]["chains"] == [1, 8453]
        assert entry["evaluation"]["duration"] == 0.1235

    def test_failed_evaluation_logged_as_error(self, structured_logger, tmp_path):
        structured_logger.log_evaluation({"address": "0xabc", "success": False})

        [entry] = self.read_lines(tmp_path)
        assert entry["level"] == "ERROR"
        [error_entry] = self.read_lines(tmp_path, "test_engine_errors.log")
        assert error_entry["evaluation"]["success"] is False

    def test_log_error(self, structured_logger, tmp_path):
        try:
            raise ConnectionError("endpoint reset")
        except ConnectionError as e:
            structured_logger.log_error(e, {"function": "fetch", "chain_id": 1})

        [entry] = self.read_lines(tmp_path)
        assert entry["error"]["error_type"] == "ConnectionError"
        assert entry["error"]["context"]["chain_id"] == 1
        assert "endpoint reset" in entry["message"]

    def test_defaults_merged(self, structured_logger):
        assert structured_logger.config["backup_count"] == 10
        assert structured_logger.config["outputs"] == ["file"]
