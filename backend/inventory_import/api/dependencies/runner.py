"""Job runner dependency."""

from functools import lru_cache

from inventory_import.core.config import get_settings
from inventory_import.db.session import get_sessionmaker
from inventory_import.services.item_store import SqlItemStore
from inventory_import.services.job_runner import CeleryJobRunner, JobRunner, LocalJobRunner
from inventory_import.utils.redis_client import create_redis_client


@lru_cache
def get_job_runner() -> JobRunner:
    """One runner per process, chosen by the IMPORT_RUNNER setting."""
    settings = get_settings()
    if settings.import_runner == "celery":
        client = create_redis_client(settings.redis_url, decode_responses=False)
        return CeleryJobRunner(client, ttl_seconds=settings.progress_ttl_seconds)
    return LocalJobRunner(lambda: SqlItemStore(get_sessionmaker()))
