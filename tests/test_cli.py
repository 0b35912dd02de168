from pathlib import Path

import pytest
from click.testing import CliRunner

import langchat.cli as cli_module
from langchat.cli import cli
from langchat.providers.llm.base import ModelInvocationError

from conftest import FakeLLMClient


@pytest.fixture
def config_path(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli_module, "configure_logging", lambda *args, **kwargs: None)
    path = tmp_path / "langchat.toml"
    path.write_text("model = 'test-model'\nchat_timeout = 10.0\n", encoding="utf-8")
    return path


def _invoke(config_path: Path, args, client=None, input=None):
    obj = {} if client is None else {"llm_client": client}
    return CliRunner().invoke(cli, ["--config", str(config_path), *args], obj=obj, input=input)


def test_ask_prints_reply(config_path: Path) -> None:
    client = FakeLLMClient(["Hello from the model"])

    result = _invoke(config_path, ["ask", "hi", "there"], client)

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "Hello from the model"
    assert client.calls[0].messages[-1].first_text == "hi there"


def test_ask_streams_chunks(config_path: Path) -> None:
    client = FakeLLMClient(["streamed answer"])

    result = _invoke(config_path, ["ask", "--stream", "go"], client)

    assert result.exit_code == 0, result.output
    assert result.output == "streamed answer\n"
    assert client.calls[0].streamed is True


def test_ask_reports_model_failures(config_path: Path) -> None:
    client = FakeLLMClient([ModelInvocationError("backend down")])

    result = _invoke(config_path, ["ask", "hi"], client)

    assert result.exit_code != 0
    assert "Model call failed: backend down" in result.output


def test_ask_requires_api_key(config_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("LANGCHAT_API_KEY", raising=False)

    result = _invoke(config_path, ["ask", "hi"])

    assert result.exit_code != 0
    assert "No API key configured" in result.output


def test_chat_loop_keeps_history_until_exit(config_path: Path) -> None:
    client = FakeLLMClient(["first reply", "second reply"])

    result = _invoke(config_path, ["chat", "--no-stream"], client, input="one\n\ntwo\nexit\n")

    assert result.exit_code == 0, result.output
    assert "first reply" in result.output
    assert "second reply" in result.output
    assert len(client.calls) == 2
    second_messages = [m.first_text for m in client.calls[1].messages]
    assert second_messages[1:] == ["one", "first reply", "two"]


def test_skills_command_lists_packages(config_path: Path, skills_dir: Path) -> None:
    result = _invoke(config_path, ["skills", "--dir", str(skills_dir)])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == "summarizer: Summarize long documents"
    assert "  - read_file" in lines
    assert "  - run_scripts_count_py" in lines


def test_skills_command_without_directory_fails(config_path: Path) -> None:
    result = _invoke(config_path, ["skills"])

    assert result.exit_code != 0
    assert "No skills directory configured" in result.output


def test_skills_command_missing_directory(config_path: Path, tmp_path: Path) -> None:
    result = _invoke(config_path, ["skills", "--dir", str(tmp_path / "nope")])

    assert result.exit_code != 0
    assert "Skills directory not found" in result.output
