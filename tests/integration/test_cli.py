"""Integration tests for the command-line interface."""

import json
import re
from unittest.mock import patch

from typer.testing import CliRunner

from conftest import ScriptedProvider, make_gateway

from arbiter import __version__
from arbiter.cli.main import app
from arbiter.core.models import DEFAULT_ROSTER, MODEL_REGISTRY
from arbiter.providers.base import BackendError

runner = CliRunner()


def council(model, messages):
    """Answers, judges in label order, and synthesizes."""
    prompt = messages[-1].content
    if prompt.startswith("You are a judge"):
        k = len(re.findall(r"^Response [A-H]:", prompt, re.MULTILINE))
        return json.dumps({"rankings": list(range(1, k + 1)), "reasoning": "fine"})
    if prompt.startswith("You are the Chairman"):
        return "Merged answer"
    return "an answer"


class TestInfoCommands:
    """Tests for commands that make no backend calls."""

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_models(self):
        result = runner.invoke(app, ["models"])
        assert result.exit_code == 0
        assert f"Total: {len(MODEL_REGISTRY)} models" in result.output

    def test_classify(self):
        result = runner.invoke(app, ["classify", "What is the capital of France?"])
        assert result.exit_code == 0
        assert "Ultra-Fast Path" in result.output

    def test_config(self):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Arbiter Configuration" in result.output
        assert "Default Timeout" in result.output
        assert "Configured Backends" in result.output


class TestBackendCommands:
    """Tests for commands that dispatch through the gateway."""

    def test_ask(self):
        gateway = make_gateway(ScriptedProvider(default="Paris"))
        with patch("arbiter.cli.main.get_gateway", return_value=gateway):
            result = runner.invoke(app, ["ask", "Capital of France?", "--model", "deepseek/deepseek-chat"])

        assert result.exit_code == 0
        assert "Paris" in result.output

    def test_ask_unknown_model(self):
        gateway = make_gateway(ScriptedProvider())
        with patch("arbiter.cli.main.get_gateway", return_value=gateway):
            result = runner.invoke(app, ["ask", "Hi", "--model", "nobody/nothing"])

        assert result.exit_code == 1
        assert "Unknown model" in result.output

    def test_ask_backend_error(self):
        gateway = make_gateway(ScriptedProvider(default=BackendError("down", status_code=503)))
        with patch("arbiter.cli.main.get_gateway", return_value=gateway):
            result = runner.invoke(app, ["ask", "Hi", "--model", "deepseek/deepseek-chat"])

        assert result.exit_code == 1
        assert "Error: down" in result.output

    def test_stream(self):
        gateway = make_gateway(ScriptedProvider(default="streamed words"))
        with patch("arbiter.cli.main.get_gateway", return_value=gateway):
            result = runner.invoke(app, ["stream", "Hi", "--model", "deepseek/deepseek-chat"])

        assert result.exit_code == 0
        assert "streamed words" in result.output

    def test_compare(self):
        provider = ScriptedProvider(
            replies={"MiniMax-M2": BackendError("MiniMax API error: 500 - boom", status_code=500)},
            default="an answer",
        )
        with patch("arbiter.cli.main.get_gateway", return_value=make_gateway(provider)):
            result = runner.invoke(app, ["compare", "Explain recursion"])

        assert result.exit_code == 0
        assert "Performance Summary" in result.output
        assert "MiniMax API error: 500 - boom" in result.output
        assert len(provider.calls) == len(DEFAULT_ROSTER)

    def test_compete(self):
        provider = ScriptedProvider(default=council)
        with patch("arbiter.cli.main.get_gateway", return_value=make_gateway(provider)):
            result = runner.invoke(app, ["compete", "Why is the sky blue?", "--original", "DeepSeek-V3"])

        assert result.exit_code == 0
        assert "Peer Review Results" in result.output
        assert "DeepSeek-V3 placed #" in result.output
        assert "Merged answer" in result.output

    def test_compete_without_synthesis(self):
        provider = ScriptedProvider(default=council)
        with patch("arbiter.cli.main.get_gateway", return_value=make_gateway(provider)):
            result = runner.invoke(app, ["compete", "Why?", "--no-synthesis"])

        assert result.exit_code == 0
        assert "Merged answer" not in result.output
        assert "Chairman Synthesis" not in result.output
