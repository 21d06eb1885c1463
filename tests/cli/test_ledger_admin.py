"""
Tests for scripts/ledger_admin.py -- the operational CLI.

Each test runs main() against a SQLite file under tmp_path with a
deterministic clock, so commands see the same database across calls.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from scripts.ledger_admin import main
from stock_kernel.db.engine import get_session_factory, reset_engine, session_scope
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.services.ledger_store import LedgerStore
from stock_config import ENV_CONFIG_PATH, ENV_DATABASE_URL
from tests.conftest import NOW_UTC, TEST_ACTOR_ID, TODAY

YESTERDAY = TODAY - timedelta(days=1)


@pytest.fixture
def cli(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv(ENV_CONFIG_PATH, raising=False)
    monkeypatch.delenv(ENV_DATABASE_URL, raising=False)
    url = f"sqlite:///{tmp_path / 'ledger.db'}"

    def _run(*argv):
        return main(["--database-url", url, *argv], clock=DeterministicClock(NOW_UTC))

    assert _run("init-db") == 0
    assert "Ledger tables created." in capsys.readouterr().out
    yield _run
    reset_engine()


@pytest.fixture
def seed():
    """Commit a row through whatever engine the last CLI call initialized."""

    def _seed(product_id, business_date, opening=0, minimum=None, **movements):
        with session_scope(get_session_factory()) as session:
            row = LedgerStore(session, DeterministicClock(NOW_UTC)).create_row(
                product_id,
                business_date,
                TEST_ACTOR_ID,
                opening_balance=opening,
                minimum_threshold=minimum,
            )
            for column, value in movements.items():
                setattr(row, column, Decimal(str(value)))

    return _seed


class TestRollover:
    def test_scheduled_rollover(self, cli, seed, capsys):
        seed("P-1", YESTERDAY, opening=5)

        assert cli("rollover") == 0

        out = capsys.readouterr().out
        assert "carried_forward: 1 row(s) carried, 1 snapshot(s), 1 attempt(s)" in out

    def test_manual_rollover_when_complete(self, cli, seed, capsys):
        seed("P-1", YESTERDAY, opening=5)
        cli("rollover", "--manual")
        assert "Rolled 1 product(s)" in capsys.readouterr().out

        assert cli("rollover", "--manual") == 1

    def test_status(self, cli, seed, capsys):
        seed("P-1", YESTERDAY, opening=5)

        assert cli("status") == 0

        out = capsys.readouterr().out
        assert "Schedule:       0 0 * * * (Asia/Jakarta)" in out
        assert "Business date:  2024-01-10" in out
        assert "Last snapshot:  -" in out
        assert "Pending carry-forward: P-1" in out

    def test_bootstrap_snapshots(self, cli, seed, capsys):
        seed("P-1", YESTERDAY, opening=5)

        assert cli("bootstrap-snapshots") == 0

        out = capsys.readouterr().out
        assert "2024-01-09: 1 snapshot(s)" in out
        assert "Bootstrapped 1 date(s)." in out


class TestReports:
    def test_low_stock(self, cli, seed, capsys):
        seed("P-1", TODAY, opening=0, minimum=1)

        assert cli("low-stock") == 0

        out = capsys.readouterr().out
        assert "P-1" in out
        assert "out_of_stock" in out

    def test_low_stock_empty(self, cli, capsys):
        assert cli("low-stock", "--date", "2024-01-09") == 0
        assert "No low-stock products on 2024-01-09." in capsys.readouterr().out

    def test_dates(self, cli, seed, capsys):
        seed("P-1", YESTERDAY, opening=5, goods_in=1)

        assert cli("dates", "--limit", "5") == 0

        assert "2024-01-09  rows=1" in capsys.readouterr().out


class TestMaintenance:
    def test_check_consistent(self, cli, seed, capsys):
        seed("P-1", YESTERDAY, opening=5, goods_in=1)
        seed("P-1", TODAY, opening=6)

        assert cli("check", "--product", "P-1", "--from", "2024-01-09") == 0
        assert "P-1: consistent from 2024-01-09 to 2024-01-10." in capsys.readouterr().out

    def test_check_reports_drift(self, cli, seed, capsys):
        seed("P-1", YESTERDAY, opening=5, goods_in=1)
        seed("P-1", TODAY, opening=2)

        assert cli("check", "--product", "P-1", "--from", "2024-01-09") == 1

        out = capsys.readouterr().out
        assert "expected 6" in out
        assert "1 issue(s); run 'resync --from 2024-01-09' to rebuild." in out

    def test_resync(self, cli, seed, capsys):
        seed("P-1", YESTERDAY, opening=5)

        assert cli("resync", "--from", "2024-01-09") == 0

        out = capsys.readouterr().out
        assert "Resynced 2024-01-09..2024-01-10: 0 row(s) updated, 0 created" in out

    def test_kernel_errors_exit_with_code(self, cli, capsys):
        assert cli("resync", "--from", "2024-02-01") == 2
        assert "ERROR [INVALID_BUSINESS_DATE]" in capsys.readouterr().err

    def test_bad_date_argument(self, cli):
        with pytest.raises(SystemExit):
            cli("resync", "--from", "yesterday")
