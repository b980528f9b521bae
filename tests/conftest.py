import pytest

from controller.app_controller import AppController
from core.models import AppConfig
from services.cloud_mirror import CloudMirror
from storage.local_store import LocalStore

from fakes import NOW, FakeCloudClient, FakeWebSocketApp, ManualExecutor


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def app_config():
    return AppConfig()


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "data")


@pytest.fixture
def cloud():
    return FakeCloudClient()


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def controller(store, cloud, executor):
    c = AppController(store, mirror_factory=lambda cfg: CloudMirror(cloud, executor=executor))
    c.start()
    yield c
    c.shutdown()


@pytest.fixture(autouse=True)
def _reset_ws():
    FakeWebSocketApp.instances.clear()
    yield
    FakeWebSocketApp.instances.clear()
