"""
Shared fixtures for tracker tests
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tracker.config import ServerWatchTarget
from tracker.parsers.components.match_state import MatchStateMachine, StateRegistry
from tracker.parsers.event_parser import EventParser

SERVER_ID = 'main'

P1_ID = '76561198995742987'
P2_ID = '76561198995742956'


@pytest.fixture
def mock_db_manager():
    """Gateway double: every write succeeds"""
    db = MagicMock()
    db.apply_operation = AsyncMock(return_value=True)
    db.apply_operations = AsyncMock(side_effect=lambda ops: len(list(ops)))
    db.get_parser_state = AsyncMock(return_value={})
    db.save_parser_state = AsyncMock(return_value=True)
    db.reset_parser_state = AsyncMock(return_value=True)
    db.abort_orphaned_state = AsyncMock(return_value=0)
    return db


@pytest.fixture
def mock_bot(mock_db_manager):
    """Create a mock bot with a database manager"""
    bot = MagicMock()
    bot.db_manager = mock_db_manager
    return bot


@pytest.fixture
def log_dir(tmp_path):
    directory = tmp_path / 'Logs'
    directory.mkdir()
    return directory


@pytest.fixture
def target(log_dir):
    return ServerWatchTarget(SERVER_ID, 'Main Server', str(log_dir), 'Insurgency.log')


@pytest.fixture
def registry(target):
    return StateRegistry([target])


@pytest.fixture
def state_machine(registry):
    return MatchStateMachine(registry)


@pytest.fixture
def event_parser():
    return EventParser()


@pytest.fixture
def log_line():
    """Build a timestamped log line"""
    def make(message: str, ts: str = '2025.10.04-14.31.05:706', frame: int = 800) -> str:
        return f"[{ts}][{frame:>3}]{message}"
    return make


@pytest.fixture
def kill_line(log_line):
    """Build a kill line from (name, id, team) killer tuples"""
    def make(killers, victim, weapon='BP_Firearm_M16A4_C_2147481419', ts='2025.10.04-14.31.05:706'):
        killer_section = ' + '.join(f"{name}[{pid}, team {team}]" for name, pid, team in killers)
        victim_name, victim_id, victim_team = victim
        return log_line(
            f"LogGameplayEvents: Display: {killer_section} killed "
            f"{victim_name}[{victim_id}, team {victim_team}] with {weapon}",
            ts=ts,
        )
    return make
