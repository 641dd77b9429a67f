"""
Unit tests for engine selection, device helpers and logging setup.
"""

import logging

import pytest

from stepgen.engine import EngineFactory
from stepgen.engine.device_utils import get_memory_info, get_optimal_device, validate_device
from stepgen.errors import EngineError
from stepgen.utils import setup_logging


class TestEngineFactory:
    """Test engine type detection."""

    @pytest.mark.parametrize("model,expected", [
        ("models/qwen2-0_5b-instruct-q4_k_m.gguf", "llamacpp"),
        ("models/OLD.GGML", "llamacpp"),
        ("gpt2", "transformers"),
        ("TinyLlama/TinyLlama-1.1B-Chat-v1.0", "transformers"),
    ])
    def test_detect_engine_type(self, model, expected):
        assert EngineFactory.detect_engine_type(model) == expected

    def test_unknown_engine_type(self):
        with pytest.raises(EngineError):
            EngineFactory.create("gpt2", engine_type="onnx")

    def test_missing_gguf_file(self, tmp_path):
        with pytest.raises(EngineError, match="not found"):
            EngineFactory.create(str(tmp_path / "missing.gguf"))

    def test_list_available_engines(self):
        assert set(EngineFactory.list_available_engines()) <= {"llamacpp", "transformers"}


class TestDeviceUtils:
    """Test device helpers."""

    def test_cpu_when_gpu_not_preferred(self):
        assert get_optimal_device(prefer_gpu=False) == "cpu"

    def test_cpu_always_valid(self):
        assert validate_device("cpu") is True

    def test_unknown_device(self):
        with pytest.raises(ValueError):
            validate_device("tpu")

    def test_cpu_memory(self):
        info = get_memory_info("cpu")

        assert info["device"] == "cpu"
        assert info["total_mb"] > 0
        assert 0 <= info["available_mb"] <= info["total_mb"]


class TestSetupLogging:
    """Test logging configuration."""

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        logger = logging.getLogger("stepgen")
        handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
        yield
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = propagate

    def test_level_by_name(self):
        logger = setup_logging("debug")

        assert logger.name == "stepgen"
        assert logger.level == logging.DEBUG

    def test_repeat_calls_replace_handlers(self):
        setup_logging("INFO")
        logger = setup_logging("INFO")

        assert len(logger.handlers) == 1

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "stepgen.log"
        logger = setup_logging("INFO", log_file=log_file)

        logging.getLogger("stepgen.generator").info("hello from the generator")
        for handler in logger.handlers:
            handler.flush()

        assert "hello from the generator" in log_file.read_text()

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            setup_logging("LOUD")
