from pathlib import Path

import pytest

from shellfx.shell import Dialect, ProcessResult, QuotedCommand, QuotingError, Raw, build, command_line, template
from shellfx.shell.command import split_template


def test_build_interleaves_fragments_and_quoted_values() -> None:
    command = build(["echo ", " > ", ""], ["a b", "out.txt"], Dialect.POSIX)

    assert command == "echo 'a b' > out.txt"
    assert isinstance(command, QuotedCommand)
    assert command.dialect is Dialect.POSIX


def test_build_requires_one_more_fragment_than_values() -> None:
    with pytest.raises(QuotingError):
        build(["echo ", ""], ["a", "b"])


def test_literal_whitespace_is_preserved() -> None:
    assert build(["  ls\t", "\n"], ["x"], Dialect.POSIX) == "  ls\tx\n"


def test_sequences_expand_to_separate_words() -> None:
    assert template("rm {}", ["a b", "c"], dialect=Dialect.POSIX) == "rm 'a b' c"
    assert template("touch {}", ("x", Path("y z")), dialect=Dialect.POSIX) == "touch x 'y z'"


def test_other_values_are_stringified_then_quoted() -> None:
    assert template("head -n {}", 5, dialect=Dialect.POSIX) == "head -n 5"
    assert template("cat {}", Path("/tmp/a b"), dialect=Dialect.POSIX) == "cat '/tmp/a b'"
    assert template("echo {}", b"bytes!", dialect=Dialect.POSIX) == "echo 'bytes!'"


def test_none_and_invalid_bytes_are_rejected() -> None:
    with pytest.raises(QuotingError):
        template("echo {}", None)
    with pytest.raises(QuotingError):
        template("echo {}", b"\xff")


def test_raw_values_bypass_quoting() -> None:
    assert template("ls {} | wc -l", Raw("*.py"), dialect=Dialect.POSIX) == "ls *.py | wc -l"


def test_results_interpolate_their_trimmed_stdout() -> None:
    result = ProcessResult(command="git branch", stdout_bytes=b"main branch\n", exit_code=0)

    assert template("git log {}", result, dialect=Dialect.POSIX) == "git log 'main branch'"


def test_template_placeholders() -> None:
    assert split_template("a {} b {}") == ["a ", " b ", ""]
    assert split_template("awk '{{print $1}}' {}") == ["awk '{print $1}' ", ""]


@pytest.mark.parametrize("fmt", ["echo {name}", "echo {0}", "echo {:>4}", "echo {!r}"])
def test_template_rejects_non_positional_fields(fmt: str) -> None:
    with pytest.raises(QuotingError):
        template(fmt, "x")


def test_template_rejects_malformed_braces() -> None:
    with pytest.raises(QuotingError):
        template("echo {", "x")


def test_template_checks_the_value_count() -> None:
    with pytest.raises(QuotingError):
        template("echo {} {}", "only one")


def test_command_line_quotes_each_argument() -> None:
    assert command_line("grep", "-r", "a pattern", ".", dialect=Dialect.POSIX) == "grep -r 'a pattern' ."
    assert command_line("ls", dialect=Dialect.POSIX) == "ls"


def test_interpolated_metacharacters_stay_data() -> None:
    command = template("echo {}", "x; rm -rf /", dialect=Dialect.BASH)

    assert command == "echo $'x; rm -rf /'"
