"""
Unit Tests for the Persistence Gateway
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import PyMongoError

from tracker.models.database import DatabaseManager
from tracker.models.operations import WriteOp

AT = datetime(2025, 10, 4, 14, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    """DatabaseManager over mocked motor collections"""
    manager = DatabaseManager(MagicMock())
    for name in DatabaseManager.COLLECTIONS:
        collection = MagicMock()
        collection.update_one = AsyncMock()
        collection.update_many = AsyncMock(return_value=MagicMock(modified_count=1))
        collection.replace_one = AsyncMock(return_value=MagicMock(upserted_id=None))
        collection.find_one = AsyncMock(return_value=None)
        collection.delete_one = AsyncMock()
        collection.create_index = AsyncMock()
        setattr(manager, name, collection)
    return manager


class TestWriteOp:
    """Test update document construction"""

    def test_to_update(self):
        op = WriteOp(
            collection='players',
            key={'server_id': 'main', 'player_key': '1'},
            set_fields={'player_name': 'A', 'first_seen': AT},
            inc_fields={'kills': 1},
            set_on_insert={'first_seen': AT, 'created': True},
            push_fields={'maps': 'Canyon'},
        )
        assert op.to_update() == {
            '$set': {'player_name': 'A', 'first_seen': AT},
            '$inc': {'kills': 1},
            '$setOnInsert': {'created': True},
            '$push': {'maps': 'Canyon'},
            '$currentDate': {'last_updated': True},
        }

    def test_set_on_insert_fully_shadowed(self):
        op = WriteOp('players', {'player_key': '1'}, set_fields={'a': 1}, set_on_insert={'a': 2})
        assert '$setOnInsert' not in op.to_update()


class TestDatabaseManager:
    """Test the gateway against mocked collections"""

    async def test_apply_operation_upserts_by_key(self, db):
        op = WriteOp('matches', {'server_id': 'main', 'match_id': 'm1'}, set_fields={'status': 'active'})
        assert await db.apply_operation(op) is True
        db.matches.update_one.assert_awaited_once_with(op.key, op.to_update(), upsert=True)

    async def test_non_upsert_operation(self, db):
        op = WriteOp('player_sessions', {'player_key': 'name:A'}, set_fields={'player_key': '1'}, upsert=False)
        await db.apply_operation(op)
        assert db.player_sessions.update_one.await_args.kwargs['upsert'] is False

    async def test_failed_write_is_logged_and_counted(self, db):
        """Test that one failing write does not stop the batch"""
        db.players.update_one.side_effect = PyMongoError("connection reset")
        ops = [
            WriteOp('players', {'player_key': '1'}, set_fields={'a': 1}),
            WriteOp('matches', {'match_id': 'm1'}, set_fields={'status': 'active'}),
        ]
        assert await db.apply_operations(ops) == 1
        db.matches.update_one.assert_awaited_once()

    async def test_indexes_continue_after_failure(self, db):
        db.servers.create_index.side_effect = PyMongoError("index exists with different options")
        await db.initialize_indexes()
        db.log_files.create_index.assert_awaited_once()
        db.players.create_index.assert_awaited_once_with([('server_id', 1), ('player_key', 1)], unique=True)

    async def test_get_parser_state_defaults_to_empty(self, db):
        assert await db.get_parser_state('main') == {}
        db.parser_states.find_one.assert_awaited_once_with({'server_id': 'main', 'parser_type': 'log_tailer'})

    async def test_save_parser_state(self, db):
        assert await db.save_parser_state('main', 'log_tailer', {'byte_offset': 10}) is True
        filter_doc, replacement = db.parser_states.replace_one.await_args.args
        assert filter_doc == {'server_id': 'main', 'parser_type': 'log_tailer'}
        assert replacement['byte_offset'] == 10

    async def test_save_parser_state_retries_duplicate_key(self, db):
        db.parser_states.replace_one.side_effect = [
            PyMongoError("E11000 duplicate key error"),
            MagicMock(upserted_id='new'),
        ]
        assert await db.save_parser_state('main', 'log_tailer', {'byte_offset': 10}) is True
        assert db.parser_states.replace_one.await_count == 2

    async def test_save_parser_state_rejects_empty_server(self, db):
        assert await db.save_parser_state('  ', 'log_tailer', {}) is False
        db.parser_states.replace_one.assert_not_awaited()

    async def test_reset_parser_state(self, db):
        assert await db.reset_parser_state('main') is True
        db.parser_states.delete_one.assert_awaited_once()

    async def test_abort_orphaned_state(self, db):
        """Test closing matches and sessions a previous run left open"""
        assert await db.abort_orphaned_state('main', AT) == 2
        query, update = db.matches.update_many.await_args.args
        assert query == {'server_id': 'main', 'status': 'active'}
        assert update['$set']['status'] == 'aborted'
        assert update['$set']['end_reason'] == 'tracker_restart'
