"""Unit tests for the logging helpers."""

import json
import logging

from roomcall.core.logging import LoggerMixin, debug_log, format_record, setup_logging


class Component(LoggerMixin):
    pass


class TestFormatRecord:
    def test_plain_message(self) -> None:
        assert format_record("hello").endswith("] hello")

    def test_dict_data_is_json(self) -> None:
        rendered = format_record("state", {"generation": 2})
        _, data = rendered.split("\nData: ")
        assert json.loads(data) == {"generation": 2}

    def test_other_data_is_appended(self) -> None:
        assert format_record("count", 3).endswith("count - 3")


class TestDebugLog:
    def test_goes_to_roomcall_logger(self, caplog) -> None:
        caplog.set_level(logging.DEBUG, logger="roomcall")

        debug_log("📡 [Signaling] Connected", {"participant_id": "a1"}, level="WARNING")

        record = caplog.records[-1]
        assert record.name == "roomcall"
        assert record.levelno == logging.WARNING
        assert "participant_id" in record.getMessage()

    def test_mixin_uses_component_logger(self, caplog) -> None:
        caplog.set_level(logging.DEBUG, logger="roomcall")

        Component().log_error("❌ [Component] broken")

        assert caplog.records[-1].name == "roomcall.Component"
        assert caplog.records[-1].levelno == logging.ERROR


class TestSetupLogging:
    def test_library_loggers_quieted(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("ROOMCALL_LOG_DIR", str(tmp_path))
        monkeypatch.delenv("ROOMCALL_LIBRARY_DEBUG", raising=False)

        logger = setup_logging("DEBUG", log_file="test.log")

        assert logger.name == "roomcall"
        assert logger.level == logging.DEBUG
        assert logging.getLogger("aioice").level == logging.WARNING
        assert logging.getLogger("aiortc").level == logging.WARNING
