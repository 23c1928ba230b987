import pytest

from workbook.cache import ResponseCache
from workbook.config import LLMContext, Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path, cache_dir=tmp_path / "llm", llm_max_attempts=5)


@pytest.fixture
def ctx(settings):
    return LLMContext(settings=settings, cache=ResponseCache(settings.cache_dir))
