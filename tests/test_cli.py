"""Tests for the command line host."""

import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

import pytest
import main as cli


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["main.py", *argv])
    return cli.main()


@pytest.fixture
def rom(tmp_path):
    path = tmp_path / "digit.ch8"
    # LD V0, 8; LD F, V0; DRW V1, V1, 5; JP 0x206
    path.write_bytes(bytes.fromhex("6008F029D1151206"))
    return path


class TestRun:
    """Test running a ROM from the command line."""

    def test_runs_and_prints_display(self, monkeypatch, capsys, rom):
        """The final display is printed as text."""
        code = run_cli(monkeypatch, "--rom", str(rom), "--cycles", "20")
        out = capsys.readouterr().out
        assert code == 0
        assert out.splitlines()[2].startswith("####.")  # glyph "8" top row
        assert "Cycles: 20" in out

    def test_missing_rom(self, monkeypatch, capsys, tmp_path):
        """A missing file exits with status 1."""
        code = run_cli(monkeypatch, "--rom", str(tmp_path / "nope.ch8"))
        assert code == 1
        assert "not found" in capsys.readouterr().out

    def test_fault_reported(self, monkeypatch, capsys, tmp_path):
        """A faulting program reports the error and exits with status 1."""
        path = tmp_path / "bad.ch8"
        path.write_bytes(bytes.fromhex("FFFF"))
        code = run_cli(monkeypatch, "--rom", str(path), "--quiet")
        assert code == 1
        assert "Unknown opcode 0xFFFF" in capsys.readouterr().out

    def test_too_large(self, monkeypatch, capsys, tmp_path):
        """Oversized images are rejected at load time."""
        path = tmp_path / "big.ch8"
        path.write_bytes(bytes(4096))
        code = run_cli(monkeypatch, "--rom", str(path))
        assert code == 1
        assert "Load error" in capsys.readouterr().out


class TestOptions:
    """Test option parsing."""

    def test_disassemble(self, monkeypatch, capsys, rom):
        """--disassemble lists instructions instead of running."""
        code = run_cli(monkeypatch, "--rom", str(rom), "--disassemble")
        lines = capsys.readouterr().out.splitlines()
        assert code == 0
        assert lines[0] == "0x200  6008  LD V0, 0x08"
        assert lines[-1] == "0x206  1206  JP 0x206"

    def test_bad_key(self, monkeypatch, rom):
        """Keys must be a single hex digit."""
        with pytest.raises(SystemExit):
            run_cli(monkeypatch, "--rom", str(rom), "--key", "G")

    def test_held_key(self, monkeypatch, capsys, tmp_path):
        """Held keys satisfy a key wait."""
        path = tmp_path / "wait.ch8"
        # LD V0, K; LD F, V0; DRW V1, V1, 5; JP 0x206
        path.write_bytes(bytes.fromhex("F00AF029D1151206"))
        code = run_cli(monkeypatch, "--rom", str(path), "--key", "1", "--cycles", "10", "--quiet")
        out = capsys.readouterr().out
        assert code == 0
        # Glyph "1" top row is 0x20
        assert out.splitlines()[0].startswith("..#.")
