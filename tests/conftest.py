import pathlib
import sys

import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from asset_review.main import create_app
from asset_review.runtime_profile import RuntimeProfile
from asset_review.store import repository


@pytest.fixture(autouse=True)
def reset_repository():
    repository.reset()
    yield


@pytest.fixture
def repo():
    return repository


@pytest.fixture
def client() -> TestClient:
    app = create_app(RuntimeProfile.from_env({}), repository=repository)
    return TestClient(app)
