import pytest

from ryohi.db import apply_sqlite_migration, connect_sqlite


@pytest.fixture
def conn():
    connection = connect_sqlite(check_same_thread=False)
    apply_sqlite_migration(connection)
    yield connection
    connection.close()
