"""
Interactive shell and command-line entry point.
"""

import builtins

import pytest
from fakes import (
    JIRA,
    RecordingExecutor,
    RecordingLLM,
    StaticRegistry,
)

from keel import main as entry
from keel.agent.engine import Engine
from keel.agent.planner_interface import HeuristicPlanner
from keel.client import cli
from keel.context.assembler import DefaultContextAssembler
from keel.core.errors import LLMError


def make_engine(llm=None) -> Engine:
    return Engine(
        planner=HeuristicPlanner(keywords=["jira"]),
        llm=llm or RecordingLLM(text="here you go"),
        tools=StaticRegistry([JIRA]),
        executor=RecordingExecutor(),
        context=DefaultContextAssembler(system_prompt="SYS"),
    )


def feed(monkeypatch, *lines: str) -> None:
    queue = list(lines)

    def fake_input(*_args):
        if not queue:
            raise EOFError
        return queue.pop(0)

    monkeypatch.setattr(builtins, "input", fake_input)


def test_shell_prints_observations_and_reply(monkeypatch, capsys) -> None:
    """Each message is answered; tool payloads are shown before the reply."""

    llm = RecordingLLM(text="here you go")
    feed(monkeypatch, "tool:app/jira.search", "", "and again?", "exit")
    cli.run_cli(make_engine(llm))

    out = capsys.readouterr().out
    assert '[app/jira] {"issues": ["ABC-1"]}' in out
    assert out.count("here you go") == 2
    # The second request carries the first exchange as history.
    assert [h.content for h in llm.requests[1].history] == ["tool:app/jira.search", "here you go"]


def test_shell_reports_engine_errors_and_continues(monkeypatch, capsys) -> None:
    """Engine failures are printed and the shell keeps reading until EOF."""

    feed(monkeypatch, "hello", "hello again")
    cli.run_cli(make_engine(RecordingLLM(error=LLMError("provider down"))))

    assert capsys.readouterr().out.count("Error: provider down") == 2


def test_main_dispatches_cli_mode(monkeypatch, tmp_path) -> None:
    """--mode cli starts the shell with the given ids."""

    seen = {}
    monkeypatch.setattr(entry.settings, "DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(cli, "run_cli", lambda **kwargs: seen.update(kwargs))

    entry.main(["--mode", "cli", "--log-level", "warning", "--user-id", "u1"])

    assert seen == {"user_id": "u1", "project_id": ""}
    assert (tmp_path / "data").is_dir()


def test_main_rejects_unknown_mode() -> None:
    """Only api and cli modes exist."""

    with pytest.raises(SystemExit):
        entry.main(["--mode", "web"])
