"""Hand-written fakes for editguard's ports and infrastructure.

Plain classes with scripted behaviour; the suite never patches objects
with unittest.mock. Image fixtures live in tests.fakes.images, record
builders in tests.fakes.records.
"""

from tests.fakes.context_store import BrokenContextStore, UnavailableBackendStore
from tests.fakes.dispatcher import FakeToolDispatcher
from tests.fakes.session import FakeAsyncSession, FakeOrmRow, FakeResult, FakeSessionFactory
from tests.fakes.storage import FakeStorage

__all__ = [
    "BrokenContextStore",
    "FakeAsyncSession",
    "FakeOrmRow",
    "FakeResult",
    "FakeSessionFactory",
    "FakeStorage",
    "FakeToolDispatcher",
    "UnavailableBackendStore",
]
