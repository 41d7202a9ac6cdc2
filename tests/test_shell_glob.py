import pytest

from miptools.shell_glob import contains_pattern, expand, list_matching, matches


@pytest.fixture
def tree(tmp_path):
    base = tmp_path.resolve()
    (base / "a.txt").write_text("a")
    (base / "b.txt").write_text("b")
    (base / ".hidden.txt").write_text("h")
    (base / "notes.md").write_text("n")
    (base / "sub").mkdir()
    (base / "sub" / "x.c").write_text("x")
    return base


@pytest.mark.parametrize(
    "token, expected",
    [("*.c", True), ("a?", True), ("abc", False), ("a b*", False), ("", False)],
)
def test_contains_pattern(token, expected):
    assert contains_pattern(token) is expected


@pytest.mark.parametrize(
    "name, pattern, expected",
    [
        ("main.c", "*.c", True),
        ("main.h", "*.c", False),
        ("ab", "a?", True),
        ("a", "a?", False),
        ("", "*", True),
        ("", "", True),
        ("", "a", False),
        ("abc", "", False),
        ("abc", "a*c", True),
        ("abc", "*", True),
    ],
)
def test_matches(name, pattern, expected):
    assert matches(name, pattern) is expected


def test_list_matching_absolute(tree):
    base = str(tree) + "/"
    found = list_matching(base, "*.txt", False, False, False)
    assert found == [base + "a.txt", base + "b.txt"]


def test_list_matching_relative(tree):
    found = list_matching(str(tree) + "/", "*.txt", False, True, False)
    assert found == ["a.txt", "b.txt"]


def test_list_matching_dirs_only(tree):
    found = list_matching(str(tree) + "/", "*", True, True, False)
    assert found == ["sub/"]


def test_list_matching_hidden(tree):
    found = list_matching(str(tree) + "/", ".*", False, True, True)
    assert ".hidden.txt" in found
    assert "a.txt" not in found


def test_list_matching_missing_dir(tree):
    assert list_matching(str(tree / "missing") + "/", "*", False, True, False) == []


def test_expand_relative(tree, monkeypatch):
    monkeypatch.chdir(tree)
    assert expand("*.txt") == ["a.txt", "b.txt"]


def test_expand_through_directory(tree, monkeypatch):
    monkeypatch.chdir(tree)
    assert expand("s*/*.c") == ["sub/x.c"]


def test_expand_no_match_returns_pattern(tree, monkeypatch):
    monkeypatch.chdir(tree)
    assert expand("nomatch*") == ["nomatch*"]


def test_expand_absolute(tree):
    base = str(tree)
    assert expand(base + "/*.txt") == [base + "/a.txt", base + "/b.txt"]


def test_expand_hidden(tree, monkeypatch):
    monkeypatch.chdir(tree)
    found = expand(".*")
    assert ".hidden.txt" in found
    assert all(name.startswith(".") for name in found)