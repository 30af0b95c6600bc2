import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

test_data_dir = ROOT / "artifacts" / "test-data"
test_data_dir.mkdir(parents=True, exist_ok=True)
os.environ["DATA_DIR"] = str(test_data_dir)
os.environ.pop("GROK_API_KEY", None)
os.environ.pop("XAI_API_KEY", None)

from backend.chs_spots.settings import LLMCredentials, settings  # noqa: E402
from backend.chs_spots.storage import PipelineStore  # noqa: E402


@pytest.fixture(autouse=True)
def isolate_settings(tmp_path):
    settings.GROK_API_KEY = None
    settings.PUBLIC_DIR = tmp_path / "public"
    yield


@pytest.fixture
def credentials() -> LLMCredentials:
    return LLMCredentials(api_key="test-key", base_url="https://llm.test/v1", model="test-model")


@pytest.fixture
def store_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'pipeline.db'}"


@pytest.fixture
def store(store_url):
    return PipelineStore(store_url)
