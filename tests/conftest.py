import os
from pathlib import Path
import tempfile

# Keep imports of the app from touching a real broker or the working directory.
os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{Path(tempfile.gettempdir()) / 'cep_deployer_test.db'}")
os.environ.setdefault("BROKER_TRANSPORT", "log")
os.environ.setdefault("DISPATCH_MODE", "direct")
os.environ.setdefault("AUTO_RUN_MIGRATIONS", "false")

import pytest

from cep_deployer.core.db import build_engine, build_session_factory
from cep_deployer.core.errors import DispatchUnavailable
from cep_deployer.models import Base, DefinitionKind
from cep_deployer.services.definitions import DefinitionService
from cep_deployer.services.dispatcher import MessageDispatcher
from cep_deployer.services.store import DefinitionStore


class RecordingDispatcher(MessageDispatcher):
    """Keeps published messages in order; fails for queues listed in ``fail_on``."""

    transport = "recording"

    def __init__(self, fail_on=()) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_on = set(fail_on)

    def publish(self, queue: str, body: str) -> None:
        if queue in self.fail_on:
            raise DispatchUnavailable(f"broker down for {queue}", queue=queue)
        self.sent.append((queue, body))


@pytest.fixture
def session_factory(tmp_path: Path):
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'definitions.db'}")
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def make_dispatcher():
    return RecordingDispatcher


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def store(session_factory) -> DefinitionStore:
    return DefinitionStore(session_factory, DefinitionKind.EVENT_TYPE)


@pytest.fixture
def service(store, dispatcher) -> DefinitionService:
    return DefinitionService(store, dispatcher)
