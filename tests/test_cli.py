"""
Tests for the command-line entry point
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import main as cli
from backend.passenger_service import PassengerService


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the CLI from installing a handler on pytest's captured stdout"""
    monkeypatch.setattr(cli, 'configure_logging', lambda level='INFO': None)


class TestCommandLine:
    """Test argument parsing and the health command"""

    def test_seed_arguments(self):
        args = cli.build_parser().parse_args(['seed', '--seed', '7', '--passengers', '3', '--tickets', '5'])
        assert (args.seed, args.passengers, args.tickets) == (7, 3, 5)
        assert args.func is cli.cmd_seed

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_health_healthy(self, db_manager, capsys):
        assert cli.main(['health']) == 0
        out = capsys.readouterr().out
        assert '"status": "HEALTHY"' in out
        assert '"Database is consistent"' in out

    def test_health_issues_found(self, db_manager, capsys):
        PassengerService.create_passenger(name='Walk In')
        assert cli.main(['health']) == 1

    def test_health_error(self, db_manager):
        db_manager.drop_tables()
        assert cli.main(['health']) == 2

    def test_init_db(self, db_manager):
        db_manager.drop_tables()
        assert cli.main(['init-db']) == 0
        assert PassengerService.count_passengers() == 0
