"""Tests for the provider check script's output helpers."""

import runpy
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "check_providers.py"


@pytest.fixture(scope="module")
def script():
    """Script namespace, loaded without running main()."""
    return runpy.run_path(str(SCRIPT))


class TestReportLines:
    """Tests for report / report_check."""

    def test_passed_check(self, script, capsys):
        """Test a passing check prints the ok marker and detail."""
        script["report_check"]("Exolix", True, "412 coins")

        out = capsys.readouterr().out
        assert "✓" in out
        assert "Exolix: 412 coins" in out

    def test_failed_check(self, script, capsys):
        """Test a failing check prints the fail marker."""
        script["report_check"]("Rate shop", False)

        out = capsys.readouterr().out
        assert "✗" in out
        assert out.rstrip().endswith("Rate shop")

    def test_warning(self, script, capsys):
        """Test warnings use their own marker."""
        script["report"]("ChangeNOW", "warn", "missing API credentials, disabled")

        out = capsys.readouterr().out
        assert "⚠" in out
        assert "ChangeNOW: missing API credentials, disabled" in out
