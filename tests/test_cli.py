"""
Tests for the command-line drivers (ecosim/cli.py).
"""

import pytest

from ecosim.cli import COMMANDS, build_parser, main
from ecosim.records import (
    parse_bound, parse_bruteforce_row, parse_hillclimb, write_search_input,
)


@pytest.fixture
def input_path(tmp_path, search_input):
    path = tmp_path / "input.dat"
    write_search_input(str(path), search_input)
    return path


def run(command, input_path, tmp_path, *extra):
    out = tmp_path / "{}.out".format(command)
    code = main([command, str(input_path), str(out), "--threads", "2"] + list(extra))
    return code, out


class TestParser:

    def test_all_commands_registered(self):
        assert set(COMMANDS) == {
            "bruteforce", "hillclimb", "simulate", "estimate",
            "omega-ci", "sigma-ci", "npop-ci", "drift-ci",
        }

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_options(self):
        args = build_parser().parse_args(["hillclimb", "a", "b", "--threads", "3", "--debug"])
        assert args.threads == 3
        assert args.debug


class TestCommands:

    def test_simulate(self, input_path, tmp_path):
        code, out = run("simulate", input_path, tmp_path)
        assert code == 0
        lines = out.read_text().splitlines()
        assert len(lines) == 1
        params, fractions = parse_bruteforce_row(lines[0])
        assert params.omega == 0.01
        assert params.npop == 2
        assert len(fractions) == 6

    def test_bruteforce(self, input_path, tmp_path):
        code, out = run("bruteforce", input_path, tmp_path)
        assert code == 0
        for line in out.read_text().splitlines():
            _, fractions = parse_bruteforce_row(line)
            assert fractions[0] > 0.0

    def test_estimate(self, input_path, tmp_path):
        code, out = run("estimate", input_path, tmp_path)
        assert code == 0
        params, likelihood = parse_hillclimb(out.read_text().strip())
        assert 1 <= params.npop <= 12
        assert 0.0 <= likelihood <= 1.0

    def test_hillclimb_debug_prints_progress(self, input_path, tmp_path, capsys):
        code, out = run("hillclimb", input_path, tmp_path, "--debug")
        assert code == 0
        progress = capsys.readouterr().out.splitlines()
        assert progress
        assert progress[0].split()[0] == "1"
        parse_hillclimb(out.read_text().strip())

    def test_npop_interval(self, input_path, tmp_path):
        code, out = run("npop-ci", input_path, tmp_path)
        assert code == 0
        lines = out.read_text().splitlines()
        assert [parse_bound(line)[0] for line in lines] == ["upper", "lower"]


class TestErrors:

    def test_missing_input(self, tmp_path, capsys):
        code = main(["simulate", str(tmp_path / "absent.dat"), str(tmp_path / "out")])
        assert code == 1
        assert "not found" in capsys.readouterr().err
        assert not (tmp_path / "out").exists()

    def test_malformed_input(self, tmp_path, capsys):
        path = tmp_path / "bad.dat"
        path.write_text("2\n1.0 5\n")
        code = main(["simulate", str(path), str(tmp_path / "out")])
        assert code == 1
        assert "error:" in capsys.readouterr().err

    def test_bad_threads(self, input_path, tmp_path):
        code, out = run("simulate", input_path, tmp_path, "--threads", "0")
        assert code == 1
        assert not out.exists()

    def test_drift_interval_without_xn(self, input_path, tmp_path, capsys):
        code, out = run("drift-ci", input_path, tmp_path)
        assert code == 1
        assert "xn" in capsys.readouterr().err
        assert not out.exists()
