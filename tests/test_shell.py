import io
import os
from pathlib import Path

import pytest

from miptools.shell import (
    ParsedLine,
    Redirection,
    RedirectionError,
    Shell,
    find_redirections,
    parse_line,
    prompt,
    strip_redirections,
)


def test_parse_pipeline():
    parsed = parse_line("ls -l | wc")
    assert parsed.stages == [["ls", "-l"], ["wc"]]
    assert parsed.timed is False


def test_parse_time_keyword():
    parsed = parse_line("time ls")
    assert parsed.stages == [["ls"]]
    assert parsed.timed is True


@pytest.mark.parametrize("line", ["", "  \t "])
def test_parse_empty(line):
    assert parse_line(line).stages == [[""]]


def test_parse_expands_globs(tmp_path, monkeypatch):
    (tmp_path / "a.txt").write_text("")
    (tmp_path / "b.txt").write_text("")
    monkeypatch.chdir(tmp_path)
    assert parse_line("echo *.txt").stages == [["echo", "a.txt", "b.txt"]]


def test_find_single_stage_both():
    found = find_redirections([["cat", "<", "in.txt", ">", "out.txt"]])
    assert found == (Redirection(0, "in.txt"), Redirection(0, "out.txt"))


def test_find_none():
    assert find_redirections([["ls"], ["wc"]]) == (None, None)


def test_find_pipeline():
    found = find_redirections([["cat", "<", "in"], ["wc", ">", "out"]])
    assert found == (Redirection(0, "in"), Redirection(1, "out"))


@pytest.mark.parametrize(
    "stages",
    [
        [["cat", ">"]],
        [["cat", ">", "a", ">", "b"]],
        [["a"], ["b", "<", "x"], ["c"]],
        [["a", ">", "x"], ["b"]],
        [["a"], ["b", "<", "x"]],
    ],
)
def test_find_bad(stages):
    with pytest.raises(RedirectionError):
        find_redirections(stages)


def test_strip_redirections():
    assert strip_redirections(["cat", "<", "in", ">", "out", "-n"]) == ["cat", "-n"]


def test_prompt_root(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("USER", "root")
    assert prompt() == os.getcwd() + "!"


def test_prompt_user(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("USER", "someone")
    assert prompt() == os.getcwd() + ">"


def test_exit_and_empty():
    shell = Shell(io.StringIO())
    assert shell.run_line("exit") is False
    assert shell.run_line("") is True


def test_execute_exit():
    assert Shell(io.StringIO()).execute(ParsedLine([["exit"]])) is False


def test_cd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "sub").mkdir()
    assert Shell(io.StringIO()).run_line("cd sub") is True
    assert Path.cwd() == (tmp_path / "sub").resolve()


def test_cd_without_argument(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    before = os.getcwd()
    assert Shell(io.StringIO()).change_dir(["cd"]) is True
    assert os.getcwd() == before
    assert "cd" in capsys.readouterr().err


def test_redirect_output(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert Shell(io.StringIO()).run_line("echo hello world > out.txt") is True
    assert (tmp_path / "out.txt").read_text() == "hello world\n"


def test_pipeline_with_redirections(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "in.txt").write_text("b\na\n")
    result = Shell(io.StringIO()).run_line("sort < in.txt | head -n 1 > out.txt")
    assert result is True
    assert (tmp_path / "out.txt").read_text() == "a\n"


def test_bad_redirection_message():
    buf = io.StringIO()
    assert Shell(buf).run_line("cat >") is True
    assert "Bad redirection" in buf.getvalue()


def test_time_report():
    buf = io.StringIO()
    Shell(buf).run_line("time true")
    text = buf.getvalue()
    assert "all:" in text
    assert "user:" in text


def test_loop_stops_at_exit(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "sub").mkdir()
    buf = io.StringIO()
    Shell(buf).loop(io.StringIO("cd sub\nexit\ncd ..\n"))
    assert Path.cwd() == (tmp_path / "sub").resolve()
    assert buf.getvalue().count(">") + buf.getvalue().count("!") == 2