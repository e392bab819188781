import pytest
from sqlalchemy import inspect, text

from cadastraqui import database
from cadastraqui.database import Base, build_engine, ensure_appointment_schema


@pytest.fixture
def schema_engine(tmp_path, monkeypatch):
    engine = build_engine(f'sqlite:///{tmp_path / "schema.db"}')
    monkeypatch.setattr(database, 'engine', engine)
    monkeypatch.setattr(database, '_appointment_schema_checked', False)
    yield engine
    engine.dispose()


def test_ensure_appointment_schema_restores_missing_indexes(schema_engine) -> None:
    Base.metadata.create_all(bind=schema_engine)
    with schema_engine.begin() as connection:
        connection.execute(text('DROP INDEX uq_appointments_open_application'))
        connection.execute(text('DROP INDEX idx_appointments_worker_status'))
    columns_before = [column['name'] for column in inspect(schema_engine).get_columns('appointments')]

    ensure_appointment_schema()

    with schema_engine.connect() as connection:
        indexes = dict(
            connection.execute(
                text("SELECT name, sql FROM sqlite_master WHERE type = 'index' AND tbl_name = 'appointments'")
            ).all()
        )
    assert {'idx_appointments_worker_start', 'idx_appointments_worker_status', 'uq_appointments_open_application'} <= set(indexes)
    assert indexes['uq_appointments_open_application'].startswith('CREATE UNIQUE INDEX')
    assert [column['name'] for column in inspect(schema_engine).get_columns('appointments')] == columns_before


def test_ensure_appointment_schema_skips_missing_table(schema_engine) -> None:
    ensure_appointment_schema()

    assert database._appointment_schema_checked
    assert 'appointments' not in inspect(schema_engine).get_table_names()
