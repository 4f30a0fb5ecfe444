"""Tests for utility modules and configuration."""

import asyncio
import json

import pytest
import structlog

from arbiter.core.config import ArbiterSettings, ProviderSettings, Settings
from arbiter.utils.logging import RequestLogger, setup_logging
from arbiter.utils.metrics import Metrics


class TestMetrics:
    """Tests for Metrics class."""

    def test_record_completion(self):
        metrics = Metrics()
        metrics.record_completion(
            backend="groq",
            model="meta-llama/llama-4-maverick:groq",
            latency_ms=100.0,
            ttft_ms=20.0,
            input_tokens=50,
            output_tokens=100,
            cost=0.001,
        )

        summary = metrics.get_summary()
        assert summary["total_requests"] == 1
        assert summary["successful_requests"] == 1
        assert summary["total_tokens"] == 150
        assert summary["backends"]["groq"]["avg_ttft_ms"] == 20.0

    def test_record_error(self):
        metrics = Metrics()
        metrics.record_error(backend="deepseek", model="deepseek/deepseek-chat", error_kind="timeout")

        summary = metrics.get_summary()
        assert summary["failed_requests"] == 1
        assert summary["backends"]["deepseek"]["errors"] == {"timeout": 1}

    def test_success_rate(self):
        metrics = Metrics()
        for _ in range(3):
            metrics.record_completion("groq", "m", 10.0, 1.0, 1, 1)
        metrics.record_error("groq", "m", "backend")

        assert metrics.get_summary()["success_rate"] == 0.75

    def test_recent_history_is_bounded(self):
        metrics = Metrics(max_history=5)
        for i in range(10):
            metrics.record_completion("groq", f"m{i}", 10.0, 1.0, 1, 1)

        recent = metrics.get_recent()
        assert len(recent) == 5
        assert recent[-1]["model"] == "m9"

    def test_reset(self):
        metrics = Metrics()
        metrics.record_completion("groq", "m", 10.0, 1.0, 1, 1)
        metrics.reset()
        assert metrics.get_summary()["total_requests"] == 0


class TestSettings:
    """Tests for configuration."""

    def test_defaults(self, monkeypatch):
        for name in ("ARBITER_DEFAULT_TIMEOUT", "ARBITER_CONTEXT_TOKEN_BUDGET"):
            monkeypatch.delenv(name, raising=False)
        settings = ArbiterSettings(_env_file=None)
        assert settings.default_timeout == 90.0
        assert settings.synthesis_timeout == 120.0
        assert settings.context_token_budget == 8000
        assert settings.chairman_model == "anthropic/claude-sonnet-4.5"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ARBITER_DEFAULT_TIMEOUT", "5")
        assert ArbiterSettings(_env_file=None).default_timeout == 5.0

    def test_invalid_log_level(self):
        with pytest.raises(ValueError):
            ArbiterSettings(_env_file=None, log_level="LOUD")

    def test_configured_backends(self, monkeypatch):
        for name in (
            "ANTHROPIC_API_KEY", "GROQ_API_KEY", "CEREBRAS_API_KEY", "OPENROUTER_API_KEY",
            "TOGETHER_API_KEY", "DEEPSEEK_API_KEY", "MINIMAX_API_KEY", "MINIMAX_GROUP_ID",
        ):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("GROQ_API_KEY", "g")
        monkeypatch.setenv("MINIMAX_API_KEY", "m")

        settings = ProviderSettings(_env_file=None)
        assert settings.configured_backends == ["groq"]
        assert settings.secret("groq_api_key") == "g"
        assert settings.secret("deepseek_api_key") is None

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "arbiter.yaml"
        path.write_text("arbiter:\n  default_timeout: 30\nserver:\n  port: 9000\n")

        settings = Settings.from_yaml(path)

        assert settings.server.port == 9000
        assert settings.arbiter.default_timeout == 30.0

    def test_from_yaml_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "missing.yaml")


class TestLogging:
    """Tests for logging setup and request scoping."""

    @pytest.fixture(autouse=True)
    def restore_structlog(self):
        structlog.contextvars.clear_contextvars()
        yield
        structlog.reset_defaults()
        structlog.contextvars.clear_contextvars()

    def test_json_lines_carry_request_context(self, capsys):
        setup_logging(ArbiterSettings(_env_file=None, log_level="DEBUG", log_format="json"))

        with RequestLogger(structlog.get_logger(), "chat", mode="all", model=None) as scope:
            structlog.get_logger().info("dispatched", backends=8)

        lines = [json.loads(line) for line in capsys.readouterr().err.splitlines()]
        dispatched = next(line for line in lines if line["event"] == "dispatched")
        assert dispatched["request_id"] == scope.request_id
        assert dispatched["operation"] == "chat"
        assert dispatched["mode"] == "all"
        assert "model" not in dispatched
        assert lines[-1]["event"] == "Request completed"
        assert "elapsed_ms" in lines[-1]

    def test_level_filters(self, capsys):
        setup_logging(ArbiterSettings(_env_file=None, log_level="WARNING", log_format="json"))

        structlog.get_logger().info("quiet")
        structlog.get_logger().warning("loud")

        events = [json.loads(line)["event"] for line in capsys.readouterr().err.splitlines()]
        assert events == ["loud"]

    @pytest.mark.asyncio
    async def test_request_id_reaches_concurrent_tasks(self):
        seen = []

        async def backend_call():
            seen.append(structlog.contextvars.get_contextvars().get("request_id"))

        with RequestLogger(structlog.get_logger(), "peer review") as scope:
            await asyncio.gather(backend_call(), backend_call())

        assert seen == [scope.request_id, scope.request_id]
        assert "request_id" not in structlog.contextvars.get_contextvars()

    def test_bindings_restored_after_failure(self):
        structlog.contextvars.bind_contextvars(request_id="outer")

        with pytest.raises(RuntimeError):
            with RequestLogger(structlog.get_logger(), "chat", request_id="inner"):
                assert structlog.contextvars.get_contextvars()["request_id"] == "inner"
                raise RuntimeError("boom")

        assert structlog.contextvars.get_contextvars() == {"request_id": "outer"}
