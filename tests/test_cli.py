"""Tests for the command line: argument parsing, main(), and the interactive loop."""

import sys
from unittest.mock import MagicMock, patch

import pytest

from react_agent import agent
from react_agent.agent import (
    build_parser,
    repl_loop,
    resolve_project_dir,
    run_repl_task,
)
from react_agent.config import _UNSET, ENV_API_BASE, ENV_API_KEY, ENV_MODEL
from react_agent.errors import AgentError
from react_agent.session import Session


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ScriptedModel:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def __call__(self, messages, **kwargs):
        self.requests.append([dict(m) for m in messages])
        return self.replies.pop(0)


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for name in (ENV_API_KEY, ENV_API_BASE, ENV_MODEL):
        monkeypatch.setenv(name, "unused")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


def _run_main(monkeypatch, argv):
    monkeypatch.setattr(sys, "argv", ["react-agent", *argv])
    with pytest.raises(SystemExit) as exc_info:
        agent.main()
    return exc_info.value.code


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParser:
    def test_defaults_are_unset(self):
        args = build_parser().parse_args(["proj"])
        assert args.project_directory == "proj"
        assert args.task is None
        assert args.model is _UNSET
        assert args.stream is _UNSET
        assert args.quiet is _UNSET

    def test_all_options(self):
        args = build_parser().parse_args(
            [
                "proj",
                "--task",
                "list files",
                "--model",
                "m",
                "--api-key",
                "k",
                "--base-url",
                "http://x",
                "--temperature",
                "0.5",
                "--max-output-tokens",
                "100",
                "--no-stream",
                "-q",
            ]
        )
        assert args.task == "list files"
        assert args.temperature == 0.5
        assert args.max_output_tokens == 100
        assert args.stream is False
        assert args.quiet is True

    def test_project_directory_required(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args([])
        assert exc_info.value.code == 2

    def test_color_flags_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["proj", "--color", "--no-color"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0


class TestResolveProjectDir:
    def test_existing(self, project):
        assert resolve_project_dir(str(project)) == project.resolve()

    def test_missing(self, tmp_path):
        with pytest.raises(AgentError, match="does not exist"):
            resolve_project_dir(str(tmp_path / "nope"))

    def test_file(self, tmp_path):
        f = tmp_path / "file.txt"
        f.write_text("", encoding="utf-8")
        with pytest.raises(AgentError, match="not a directory"):
            resolve_project_dir(str(f))


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


class TestMain:
    def test_bad_directory_exits_1(self, monkeypatch, clean_env, tmp_path):
        monkeypatch.setenv(ENV_API_KEY, "sk")
        assert _run_main(monkeypatch, [str(tmp_path / "missing"), "--task", "x"]) == 1

    def test_missing_api_key_exits_1(self, monkeypatch, clean_env, project, capsys):
        assert _run_main(monkeypatch, [str(project), "--task", "x"]) == 1
        assert ENV_API_KEY in capsys.readouterr().err

    def test_single_task_prints_answer(self, monkeypatch, clean_env, project, capsys):
        monkeypatch.setenv(ENV_API_KEY, "sk-test")
        model = ScriptedModel("<final_answer>all done</final_answer>")
        with patch("react_agent.agent.call_llm_stream", side_effect=model) as mock_stream:
            code = _run_main(monkeypatch, [str(project), "--task", "do it", "-q"])
        assert code == 0
        assert capsys.readouterr().out.strip() == "all done"
        kwargs = mock_stream.call_args[1]
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["model"] == "moonshotai/kimi-k2"
        assert kwargs["verbose"] is False

    def test_no_stream_uses_call_llm(self, monkeypatch, clean_env, project):
        model = ScriptedModel("<final_answer>x</final_answer>")
        with patch("react_agent.agent.call_llm", side_effect=model) as mock_llm:
            code = _run_main(
                monkeypatch,
                [str(project), "--task", "t", "--no-stream", "--api-key", "k", "-q"],
            )
        assert code == 0
        assert mock_llm.call_count == 1

    def test_env_settings_reach_transport(self, monkeypatch, clean_env, project):
        monkeypatch.setenv(ENV_API_KEY, "sk")
        monkeypatch.setenv(ENV_API_BASE, "http://local/v1")
        monkeypatch.setenv(ENV_MODEL, "local-model")
        model = ScriptedModel("<final_answer>x</final_answer>")
        with patch("react_agent.agent.call_llm_stream", side_effect=model) as mock_stream:
            _run_main(monkeypatch, [str(project), "--task", "t", "-q"])
        kwargs = mock_stream.call_args[1]
        assert kwargs["base_url"] == "http://local/v1"
        assert kwargs["model"] == "local-model"

    def test_failed_task_exits_1(self, monkeypatch, clean_env, project):
        monkeypatch.setenv(ENV_API_KEY, "sk")
        model = ScriptedModel(*["no tags"] * 5)
        with patch("react_agent.agent.call_llm_stream", side_effect=model):
            assert _run_main(monkeypatch, [str(project), "--task", "t", "-q"]) == 1

    def test_keyboard_interrupt_exits_130(self, monkeypatch, clean_env, project):
        monkeypatch.setenv(ENV_API_KEY, "sk")
        with patch("react_agent.agent._run_main", side_effect=KeyboardInterrupt):
            assert _run_main(monkeypatch, [str(project), "--task", "t"]) == 130

    def test_bad_config_exits_1(self, monkeypatch, clean_env, project):
        monkeypatch.setenv(ENV_API_KEY, "sk")
        (project / "react-agent.toml").write_text("temperature = 'hot'\n", encoding="utf-8")
        assert _run_main(monkeypatch, [str(project), "--task", "t"]) == 1


# ---------------------------------------------------------------------------
# Interactive loop
# ---------------------------------------------------------------------------


def _session(project, *replies):
    return Session(
        str(project), call_model=ScriptedModel(*replies), confirm=lambda q: False
    )


def _prompt_session(inputs):
    mock_session = MagicMock()
    mock_session.prompt.side_effect = inputs
    return mock_session


class TestRunReplTask:
    def test_prints_answer(self, project, capsys):
        session = _session(project, "<final_answer>hello</final_answer>")
        assert run_repl_task(session, "greet") == "hello"
        assert capsys.readouterr().out.strip() == "hello"

    def test_failure_is_reported_not_raised(self, project, capsys):
        session = _session(project, *["garbage"] * 5)
        assert run_repl_task(session, "greet") is None
        assert capsys.readouterr().out == ""

    def test_unusable_path_ends_only_the_task(self, project):
        long_name = "b" * 300
        session = _session(
            project,
            f'<action>create_directory("{long_name}")</action>',
            "<final_answer>next</final_answer>",
        )
        assert run_repl_task(session, "make it") is None
        assert run_repl_task(session, "carry on") == "next"


class TestReplLoop:
    def test_exit_words(self, project):
        for word in ("quit", "EXIT", "/quit", "/exit"):
            session = _session(project)
            with patch(
                "prompt_toolkit.PromptSession", return_value=_prompt_session([word])
            ):
                repl_loop(session, verbose=False)
            assert session.conversation_length == 0

    def test_eof_exits(self, project):
        session = _session(project)
        with patch(
            "prompt_toolkit.PromptSession", return_value=_prompt_session([EOFError()])
        ):
            repl_loop(session)

    def test_keyboard_interrupt_at_prompt_exits(self, project):
        session = _session(project)
        with patch(
            "prompt_toolkit.PromptSession",
            return_value=_prompt_session([KeyboardInterrupt()]),
        ):
            repl_loop(session)

    def test_tasks_share_history(self, project, capsys):
        session = _session(
            project,
            "<final_answer>one</final_answer>",
            "<final_answer>two</final_answer>",
        )
        inputs = ["", "   ", "first task", "second task", "quit"]
        with patch("prompt_toolkit.PromptSession", return_value=_prompt_session(inputs)):
            repl_loop(session, verbose=False)
        assert capsys.readouterr().out.split() == ["one", "two"]
        assert session.conversation_length == 4
        assert session.call_model.requests[1][1]["content"] == "<question>first task</question>"

    def test_commands_do_not_call_model(self, project):
        session = _session(project, "<final_answer>a</final_answer>")
        inputs = ["task", "/history", "/help", "/clear", "/exit"]
        with patch("prompt_toolkit.PromptSession", return_value=_prompt_session(inputs)):
            repl_loop(session)
        assert len(session.call_model.requests) == 1
        assert session.conversation_length == 0

    def test_failed_task_keeps_loop_running(self, project):
        session = _session(
            project,
            *["garbage"] * 5,
            "<final_answer>recovered</final_answer>",
        )
        inputs = ["bad task", "good task", "quit"]
        with patch("prompt_toolkit.PromptSession", return_value=_prompt_session(inputs)):
            repl_loop(session, verbose=False)
        assert len(session.call_model.requests) == 6
        assert session.history[-1]["content"] == "<final_answer>recovered</final_answer>"

    def test_history_file_location(self, project):
        session = _session(project)
        with (
            patch(
                "prompt_toolkit.PromptSession", return_value=_prompt_session(["quit"])
            ),
            patch("prompt_toolkit.history.FileHistory") as mock_history,
        ):
            repl_loop(session, verbose=False)
        path = mock_history.call_args[0][0]
        assert path == str(project / ".react-agent" / "task_history")
        assert (project / ".react-agent").is_dir()
