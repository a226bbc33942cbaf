from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from pathlib import Path
from unittest.mock import patch

import psycopg2
import pytest

from studio_sync.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS_ALL, main as cli_main
from studio_sync.services.orchestrator import ReconciliationEngine
from studio_sync.services.projector import TermScope

"""Exit code contract: 0 all steps succeeded, 2 a write step failed, 1 fatal."""

ARGS = ["--as-of", "2025-06-05"]


@contextmanager
def _no_db(cfg):
    yield object()


@pytest.fixture()
def run_cli(write_config: Path, store, error_log, order_source_factory, make_order):
    def _run(*, orders=None, source_error=None, argv=()):
        if orders is None:
            orders = [make_order([("Level 1", "Term 2B / Leader")])]
        engine = ReconciliationEngine(
            order_source_factory(orders, error=source_error),
            store,
            as_of=date(2025, 6, 5),
            scope=TermScope(term="2"),
            error_log=error_log,
        )
        with patch("studio_sync.cli.__main__._db_connection", _no_db), \
             patch("studio_sync.cli.__main__.build_engine", return_value=engine):
            return cli_main([*ARGS, *argv])

    return _run


def test_exit_code_fatal_without_config(temp_workdir: Path, capsys):
    code = cli_main(ARGS)
    assert code == EXIT_FATAL == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_all_success(run_cli, capsys):
    assert run_cli() == EXIT_SUCCESS_ALL == 0
    assert "SUMMARY orders=1" in capsys.readouterr().out


def test_exit_code_partial_failure(run_cli, store):
    store.fail_tables = {"free_orders"}
    assert run_cli() == EXIT_PARTIAL_FAILURE == 2


def test_exit_code_fetch_failure_is_fatal(run_cli, capsys):
    assert run_cli(source_error="Shopify connection failed: timed out") == EXIT_FATAL
    out = capsys.readouterr().out
    assert "failed=fetch" in out


def test_exit_code_lock_held_is_fatal(run_cli, store):
    store.lock_available = False
    assert run_cli() == EXIT_FATAL


def test_exit_code_database_unreachable(write_config: Path, capsys):
    @contextmanager
    def refuse(cfg):
        raise psycopg2.OperationalError("could not connect to server")
        yield

    with patch("studio_sync.cli.__main__._db_connection", refuse):
        code = cli_main(ARGS)
    assert code == EXIT_FATAL
    assert "ERROR database: could not connect to server" in capsys.readouterr().out


def test_exit_code_unexpected_error(write_config: Path, capsys):
    with patch("studio_sync.cli.__main__._db_connection", _no_db), \
         patch("studio_sync.cli.__main__.build_engine", side_effect=RuntimeError("boom")):
        code = cli_main(ARGS)
    assert code == EXIT_FATAL
    assert "ERROR sync failed: boom" in capsys.readouterr().out


def test_missing_shopify_credentials_is_fatal(write_config: Path, monkeypatch, capsys):
    monkeypatch.delenv("SHOPIFY_API_TOKEN", raising=False)
    with patch("studio_sync.cli.__main__._db_connection", _no_db):
        code = cli_main(ARGS)
    assert code == EXIT_FATAL
    assert "ERROR source:" in capsys.readouterr().out
