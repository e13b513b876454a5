"""
Container (DI) 단위 테스트
"""

from unittest.mock import MagicMock

import pytest

from notebook_rag.application.chat_pipeline import ChatPipeline
from notebook_rag.infrastructure.config import RagConfig
from notebook_rag.infrastructure.container import BREAKER_NAMES, Container
from notebook_rag.infrastructure.persistence import InMemoryRepository, SQLiteRepository


@pytest.fixture(autouse=True)
def clean_container():
    Container.reset()
    Container.override("config", RagConfig())
    yield
    Container.reset()


class TestSingletons:
    def test_same_instance_returned(self):
        assert Container.get_index_store() is Container.get_index_store()
        assert Container.get_repository() is Container.get_repository()

    def test_memory_backend_default(self):
        assert isinstance(Container.get_repository(), InMemoryRepository)

    def test_sqlite_backend(self, tmp_path):
        config = RagConfig()
        config.persistence.backend = "sqlite"
        config.persistence.sqlite_path = str(tmp_path / "nb.db")
        Container.override("config", config)

        assert isinstance(Container.get_repository(), SQLiteRepository)

    def test_reset_clears_instances(self):
        store = Container.get_index_store()
        Container.reset()
        Container.override("config", RagConfig())
        assert Container.get_index_store() is not store


class TestBreakers:
    def test_shared_per_service(self):
        """같은 이름은 같은 차단기를 공유"""
        assert Container.get_breaker("index") is Container.get_breaker("index")
        assert Container.get_breaker("index") is not Container.get_breaker("embedding")

    def test_unknown_breaker(self):
        with pytest.raises(KeyError):
            Container.get_breaker("database")

    def test_stats_cover_all_breakers(self):
        stats = Container.get_breaker_stats()
        assert set(stats) == set(BREAKER_NAMES)
        assert all(s["state"] == "closed" for s in stats.values())

    def test_thresholds_from_config(self):
        config = RagConfig()
        config.resilience.failure_threshold = 2
        Container.override("config", config)
        assert Container.get_breaker("completion").failure_threshold == 2


class TestOverrides:
    def test_override_wins(self):
        mock_llm = MagicMock()
        Container.override("llm_client", mock_llm)
        assert Container.get_llm_client() is mock_llm

    def test_test_override_restores(self):
        original = Container.get_index_store()
        replacement = MagicMock()

        with Container.test_override("index_store", replacement):
            assert Container.get_index_store() is replacement

        assert Container.get_index_store() is original

    def test_chat_pipeline_wiring(self):
        pipeline = Container.get_chat_pipeline()

        assert isinstance(pipeline, ChatPipeline)
        assert pipeline.repository is Container.get_repository()
        assert pipeline.worker_pool is Container.get_worker_pool("memory")
        assert pipeline.stream_timeout == 120.0
        assert pipeline.source_anchoring_enabled is True
        assert Container.get_hybrid_search().anchor_weight == 1.0

    def test_chat_history_search_shared(self):
        history_search = Container.get_chat_history_search()

        assert history_search is not None
        assert Container.get_query_reformulator().history_search is history_search
        assert Container.get_chat_pipeline().history_search is history_search
        assert Container.get_ingestion_service().history_search is history_search
        assert history_search.index_store is not Container.get_index_store()

    def test_chat_history_search_disabled(self):
        config = RagConfig()
        config.query_reformulation.history_search_enabled = False
        Container.override("config", config)

        assert Container.get_chat_history_search() is None
        assert Container.get_query_reformulator().history_search is None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_and_shutdown(self):
        await Container.initialize()
        assert Container.get_worker_pool("ingestion").running
        assert Container.get_worker_pool("memory").running

        await Container.shutdown()
        assert not Container.get_worker_pool("ingestion").running
