import io

import pytest

from miptools.psearch import (
    Match,
    SearchOptions,
    iter_files,
    main,
    parse_args,
    prefix_function,
    search_file,
    search_tree,
)

CONTENT = b"first line\nsecond needle here\nthird\nneedle again"


@pytest.fixture
def tree(tmp_path):
    base = tmp_path / "data"
    base.mkdir()
    (base / "a.txt").write_bytes(CONTENT)
    (base / "sub").mkdir()
    (base / "sub" / "b.txt").write_bytes(b"no match\nneedle\n")
    return base


def test_parse_args_full():
    options = parse_args(["-n", "-t4", "/data", "needle"])
    assert options == SearchOptions(
        pattern="needle", directory="/data", threads=4, recursive=False
    )


def test_parse_args_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    options = parse_args(["needle"])
    assert options.directory == str(tmp_path.resolve()) or options.directory == str(tmp_path)
    assert options.threads == 1
    assert options.recursive is True


def test_parse_args_bad_thread_count():
    assert parse_args(["-tx", "/d", "p"]).threads == 1


def test_prefix_function_value():
    assert prefix_function("abab") == [0, 0, 1, 2]
    assert prefix_function("") == []


@pytest.mark.parametrize("pattern", ["aabaaab", "abcabcd", "aaaa", "xyz"])
def test_prefix_function_borders(pattern):
    result = prefix_function(pattern)
    assert len(result) == len(pattern)
    for i, border in enumerate(result):
        assert border <= i
        assert pattern[:border] == pattern[i + 1 - border : i + 1]


def test_iter_files_recursive(tree):
    base = str(tree)
    assert set(iter_files(base, True)) == {base + "/a.txt", base + "/sub/b.txt"}


def test_iter_files_flat(tree):
    base = str(tree)
    assert list(iter_files(base, False)) == [base + "/a.txt"]


def test_iter_files_missing(tmp_path):
    assert list(iter_files(str(tmp_path / "missing"), True)) == []


def test_search_file_lines(tree):
    path = str(tree / "a.txt")
    found = search_file(path, "needle")
    assert found == [
        Match(path, 2, b"second needle here"),
        Match(path, 4, b"needle again"),
    ]


def test_match_format(tree):
    path = str(tree / "a.txt")
    first = search_file(path, "needle")[0]
    expected = f"[found] line 2 from '{path}':\n>>second needle here<<\n".encode()
    assert first.format() == expected


def test_search_file_overlap(tmp_path):
    path = tmp_path / "f"
    path.write_bytes(b"aaaab\n")
    assert [m.line for m in search_file(str(path), "aaab")] == [1]


def test_search_file_one_match_per_line(tmp_path):
    path = tmp_path / "f"
    path.write_bytes(b"needle needle\n")
    assert len(search_file(str(path), "needle")) == 1


def test_search_file_missing(tmp_path):
    with pytest.raises(OSError):
        search_file(str(tmp_path / "missing"), "needle")


@pytest.mark.parametrize("threads", [1, 3])
def test_search_tree(tree, threads):
    out = io.BytesIO()
    options = SearchOptions(pattern="needle", directory=str(tree), threads=threads)
    assert search_tree(options, out) == 3
    text = out.getvalue()
    assert text.count(b"[found]") == 3
    assert b">>needle again<<\n" in text


def test_search_tree_flat(tree):
    out = io.BytesIO()
    options = SearchOptions(
        pattern="needle", directory=str(tree), threads=2, recursive=False
    )
    assert search_tree(options, out) == 2
    assert b"sub/b.txt" not in out.getvalue()


def test_search_tree_negative_threads(tree):
    with pytest.raises(ValueError):
        search_tree(SearchOptions(pattern="x", directory=str(tree), threads=-1), io.BytesIO())


def test_main_writes_log(tree, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main([str(tree), "-t2", "needle"]) == 0
    log = (tmp_path / "log.txt").read_bytes()
    assert log.count(b"[found]") == 3