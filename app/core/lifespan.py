from contextlib import asynccontextmanager
import logging

from app.ai.factory import get_ai_client
from app.core.config import settings
from app.pipeline.orchestrator import PipelineOrchestrator
from app.services.job_runner import JobRunner
from app.storage.kv_store import SqliteKeyValueStore
from app.storage.object_store import LocalObjectStore

logger = logging.getLogger(__name__)


def build_job_runner(*, ai_client=None, object_store=None, kv_store=None) -> JobRunner:
    client = ai_client or get_ai_client()
    orchestrator = PipelineOrchestrator.build(
        object_store=object_store or LocalObjectStore(settings.object_store_root),
        kv_store=kv_store or SqliteKeyValueStore(settings.kv_db_path),
        llm=client,
        vision=client,
    )
    return JobRunner(orchestrator)


@asynccontextmanager
async def lifespan(app):
    # Tests may install a runner with fake collaborators before startup.
    runner = getattr(app.state, "job_runner", None)
    if runner is None:
        runner = build_job_runner()
        app.state.job_runner = runner
    logger.info("pipeline_ready kv_db=%s object_root=%s", settings.kv_db_path, settings.object_store_root)
    yield
    await runner.shutdown()
