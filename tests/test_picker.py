"""Tests for candidate streaming and the selection program."""

import io
import shutil

import pytest

from gitsmash.candidates import Candidate, CandidateSource
from gitsmash.errors import MenuNotFoundError, PickerError
from gitsmash.picker import (
    MenuCommand,
    PickerProcess,
    StdoutSink,
    resolve_menu_command,
    select_target,
    stream_candidates,
)


def shell_menu(script):
    return MenuCommand(shutil.which("sh"), ("-c", script))


def generate(count, produced=None):
    for i in range(count):
        if produced is not None:
            produced.append(i)
        yield Candidate(f"{i:040x}", CandidateSource.FILE, f"{i:07x} commit number {i}")


class RecordingSink:
    """Accepts a fixed number of lines, then reports itself closed."""

    def __init__(self, capacity):
        self.capacity = capacity
        self.lines = []

    def write(self, line):
        if len(self.lines) >= self.capacity:
            return False
        self.lines.append(line)
        return True


class BrokenStream(io.StringIO):
    def write(self, text):
        raise BrokenPipeError()


class TestStreamCandidates:
    """Test feeding candidates to a sink."""

    def test_writes_every_candidate(self):
        sink = RecordingSink(capacity=10)

        written = stream_candidates(generate(3), sink)

        assert written == 3
        assert sink.lines == [f"{i:07x} commit number {i}" for i in range(3)]

    def test_stops_when_sink_closes(self):
        produced = []
        candidates = generate(100, produced)

        written = stream_candidates(candidates, RecordingSink(capacity=2))

        assert written == 2
        assert len(produced) == 3
        # the generator was closed and yields nothing more
        assert list(candidates) == []


class TestStdoutSink:
    """Test the stdout sink."""

    def test_writes_lines(self):
        stream = io.StringIO()
        sink = StdoutSink(stream)

        assert sink.write("abc first")
        assert sink.write("def second")
        assert stream.getvalue() == "abc first\ndef second\n"
        assert not sink.is_terminal

    def test_broken_pipe_closes_quietly(self):
        sink = StdoutSink(BrokenStream())

        assert sink.write("abc") is False
        assert sink.closed
        assert sink.write("def") is False

    def test_keeps_color_codes(self):
        stream = io.StringIO()
        StdoutSink(stream).write("\x1b[33mabc\x1b[0m")

        assert stream.getvalue() == "\x1b[33mabc\x1b[0m\n"


class TestResolveMenuCommand:
    """Test locating the selection program."""

    def test_configured_command(self):
        menu = resolve_menu_command("sh -c 'head -n 1'")

        assert menu.command == shutil.which("sh")
        assert menu.args == ("-c", "head -n 1")

    def test_configured_command_missing(self):
        with pytest.raises(MenuNotFoundError, match="configured menu command"):
            resolve_menu_command("no-such-menu-program --flag")

    def test_prefers_skim(self, monkeypatch):
        monkeypatch.setattr("gitsmash.picker.shutil.which", lambda name: f"/opt/bin/{name}")

        menu = resolve_menu_command()

        assert menu.command == "/opt/bin/sk"
        assert menu.args == ("--ansi", "--preview", "git show --stat --patch --color {+1}")

    def test_falls_back_to_fzf_with_ext_diff(self, monkeypatch):
        monkeypatch.setattr("gitsmash.picker.shutil.which",
                            lambda name: "/opt/bin/fzf" if name == "fzf" else None)

        menu = resolve_menu_command(ext_diff_option="--no-ext-diff")

        assert menu.command == "/opt/bin/fzf"
        assert menu.args[-1] == "git show --stat --patch --color --no-ext-diff {+1}"

    def test_nothing_installed(self, monkeypatch):
        monkeypatch.setattr("gitsmash.picker.shutil.which", lambda name: None)

        with pytest.raises(MenuNotFoundError) as excinfo:
            resolve_menu_command()

        assert "skim" in excinfo.value.hint


class TestPickerProcess:
    """Test running a selection program over a pipe."""

    def test_picks_first_line(self, tmp_path):
        with PickerProcess(shell_menu("head -n 1"), cwd=tmp_path) as picker:
            stream_candidates(generate(3), picker)
            output = picker.finish()

        assert output == "0000000 commit number 0\n"
        assert select_target(output) == "0000000"

    def test_early_exit_stops_the_stream(self, tmp_path):
        produced = []
        with PickerProcess(shell_menu("head -n 1"), cwd=tmp_path) as picker:
            written = stream_candidates(generate(200000, produced), picker)
            output = picker.finish()

        assert select_target(output) == "0000000"
        assert written < 200000
        assert len(produced) < 200000
        assert picker.closed

    def test_selection_after_reading_everything(self, tmp_path):
        script = "cat >/dev/null; echo 'deadbeef extra text'"
        with PickerProcess(shell_menu(script), cwd=tmp_path) as picker:
            assert stream_candidates(generate(5), picker) == 5
            output = picker.finish()

        assert select_target(output) == "deadbeef"

    @pytest.mark.parametrize("status", [0, 1, 130])
    def test_abort_returns_nothing(self, tmp_path, status):
        with PickerProcess(shell_menu(f"cat >/dev/null; exit {status}"), cwd=tmp_path) as picker:
            stream_candidates(generate(2), picker)
            output = picker.finish()

        assert select_target(output) == ""

    def test_failure_status_raises(self, tmp_path):
        with PickerProcess(shell_menu("cat >/dev/null; exit 2"), cwd=tmp_path) as picker:
            stream_candidates(generate(2), picker)
            with pytest.raises(PickerError) as excinfo:
                picker.finish()

        assert excinfo.value.exit_code == 2

    def test_missing_program(self, tmp_path):
        picker = PickerProcess(MenuCommand(str(tmp_path / "missing-menu")), cwd=tmp_path)

        with pytest.raises(MenuNotFoundError):
            picker.start()

    def test_finish_without_start(self):
        with pytest.raises(PickerError):
            PickerProcess(MenuCommand("sk")).finish()


class TestSelectTarget:
    """Test extracting the target from picker output."""

    @pytest.mark.parametrize("output,expected", [
        ("deadbeef extra text\n", "deadbeef"),
        ("  abc123\tsubject\n", "abc123"),
        ("cafe\n", "cafe"),
        ("", ""),
        ("\n  \n", ""),
        ("\x1b[33mdeadbeef\x1b[m [\x1b[31mB\x1b[m] subject\n", "deadbeef"),
    ])
    def test_first_token(self, output, expected):
        assert select_target(output) == expected
