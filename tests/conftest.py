import pytest
from loguru import logger

from seven_layer_system.models import bars_to_frame
from seven_layer_system.orchestrator import SignalOrchestrator
from seven_layer_system.storage import InMemorySignalStore, SQLiteSignalStore

from tests.builders import flat_bars, trending_bars


@pytest.fixture(autouse=True)
def quiet_logs():
    logger.disable("seven_layer_system")
    yield
    logger.enable("seven_layer_system")


@pytest.fixture
def memory_store():
    return InMemorySignalStore()


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteSignalStore(str(tmp_path / "signals.db"))


@pytest.fixture
def orchestrator(memory_store):
    return SignalOrchestrator(store=memory_store)


@pytest.fixture
def uptrend_df():
    return bars_to_frame(trending_bars(60, step=10.0))


@pytest.fixture
def downtrend_df():
    return bars_to_frame(trending_bars(60, step=-10.0))


@pytest.fixture
def flat_df():
    return bars_to_frame(flat_bars(60))
