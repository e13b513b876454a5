import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from notebook_rag.core.resilience import RetryPolicy
from notebook_rag.domain.entities import Session
from notebook_rag.infrastructure.config import RagConfig
from notebook_rag.infrastructure.index import ChunkIndexMapper, InMemoryIndexStore
from notebook_rag.infrastructure.persistence import InMemoryRepository
from tests.helpers import FakeEmbedder, make_chunk

# 재시도 대기 없는 정책 (테스트 속도)
NO_WAIT_RETRY = RetryPolicy(max_attempts=2, delay=0.0, backoff=1.0)


def pytest_configure(config):
    """테스트 시작 전 환경 설정 로드"""
    project_root = Path(__file__).parent.parent

    main_env_path = project_root / ".env"
    if main_env_path.exists():
        load_dotenv(main_env_path, override=False)

    env_file = os.environ.get("ENV_FILE", ".env.test")
    env_path = project_root / env_file
    if env_path.exists():
        load_dotenv(env_path, override=True)


@pytest.fixture
def config():
    """기본값 RagConfig"""
    return RagConfig()


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def index_store():
    return InMemoryIndexStore(ChunkIndexMapper())


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def mock_llm():
    """CompletionProvider Mock (기본 응답: 빈 문자열)"""
    mock = MagicMock()
    mock.complete = AsyncMock(return_value="")
    mock.complete_json = AsyncMock(return_value={})
    return mock


@pytest_asyncio.fixture
async def session(repository):
    """저장소에 등록된 세션"""
    return await repository.save_session(Session(id="session-1", title="Test notebook"))


@pytest.fixture
def chunk_factory():
    """Chunk 생성 팩토리"""
    return make_chunk


@pytest.fixture
def no_wait_retry():
    return NO_WAIT_RETRY
