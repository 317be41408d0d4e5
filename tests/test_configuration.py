import json

import pytest
from sqlalchemy import select

from tracker.config import Config
from tracker.database.models import AuditLog, Configuration
from tracker.services.configuration import INITIAL_CONFIGS, ConfigurationService


@pytest.fixture
def config_service(db):
    return ConfigurationService(db.session_factory)


async def test_seed_defaults_only_adds_missing_keys(db, config_service):
    assert await config_service.seed_defaults() == len(INITIAL_CONFIGS)
    await config_service.set('sync.batch_size', 25, user_id=1)

    assert await config_service.seed_defaults() == 0
    await config_service.load_all()
    assert config_service.get('sync.batch_size') == 25
    assert config_service.get('history.retention_days') == Config.HISTORY_RETENTION_DAYS


async def test_get_falls_back_to_default(config_service):
    await config_service.load_all()
    assert config_service.get('sync.batch_size') is None
    assert config_service.get('sync.batch_size', 7) == 7


async def test_set_writes_audit_entry(db, config_service):
    await config_service.seed_defaults()
    await config_service.set('sync.batch_delay_ms', 500, user_id=1234)

    async with db.get_session() as session:
        entries = (await session.execute(select(AuditLog))).scalars().all()
        stored = await session.get(Configuration, 'sync.batch_delay_ms')

    assert json.loads(stored.value) == 500
    assert len(entries) == 1
    assert entries[0].user_id == 1234
    assert entries[0].action == 'config_set'
    assert json.loads(entries[0].details) == {
        'key': 'sync.batch_delay_ms',
        'old_value': Config.SYNC_BATCH_DELAY_MS,
        'new_value': 500,
    }
    assert config_service.get('sync.batch_delay_ms') == 500


async def test_invalid_json_is_skipped_on_load(db, config_service):
    async with db.transaction() as session:
        session.add(Configuration(key='sync.batch_size', value='{not json'))
        session.add(Configuration(key='sync.staleness_hours', value='12'))

    await config_service.load_all()

    assert config_service.list_all() == {'sync.staleness_hours': 12}


async def test_get_by_category(config_service):
    await config_service.seed_defaults()
    await config_service.load_all()

    sync_settings = config_service.get_by_category('sync')

    assert set(sync_settings) == {'batch_size', 'batch_delay_ms', 'staleness_hours'}
    assert config_service.get_by_category('history') == {'retention_days': Config.HISTORY_RETENTION_DAYS}
