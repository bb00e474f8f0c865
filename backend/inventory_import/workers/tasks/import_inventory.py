"""Celery task that runs one inventory import in a worker process."""

from __future__ import annotations

import dataclasses
import logging

from celery.exceptions import SoftTimeLimitExceeded

from inventory_import.core.config import get_settings
from inventory_import.core.exceptions import ImportServiceError
from inventory_import.db.session import get_sessionmaker
from inventory_import.services.control import RedisControlChannel
from inventory_import.services.import_controller import ImportController
from inventory_import.services.import_models import ImportStatus, ReconciliationMode
from inventory_import.services.item_store import SqlItemStore
from inventory_import.services.progress_tracker import (
    ProgressReporter,
    RedisProgressSink,
    fetch_progress,
    publish_errors,
)
from inventory_import.storage.upload_store import delete_upload, get_upload
from inventory_import.utils.redis_client import create_redis_client
from inventory_import.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="inventory_import.workers.tasks.import_inventory")
def import_inventory_task(self, job_id: str, mode: str) -> dict:
    """Parse the staged upload, run the row loop and publish progress to Redis."""
    settings = get_settings()
    client = create_redis_client(settings.redis_url, decode_responses=False)
    ttl = settings.progress_ttl_seconds

    # A redelivered message (acks_late after a lost worker) must not replay rows
    existing = fetch_progress(client, job_id)
    if existing is not None and existing.status is not ImportStatus.PREPARING:
        logger.warning(
            f"Import job {job_id} is already {existing.status.value}; ignoring redelivery"
        )
        client.close()
        return existing.to_dict()

    reporter = ProgressReporter(job_id, sinks=[RedisProgressSink(client, ttl)])
    controller = ImportController(
        SqlItemStore(get_sessionmaker()),
        job_id=job_id,
        control=RedisControlChannel(job_id, client),
        reporter=reporter,
        interrupts=(SoftTimeLimitExceeded,),
    )

    try:
        content = get_upload(client, job_id)
        if content is None:
            raise FileNotFoundError(
                f"Upload for job {job_id} not found in Redis; it may have expired"
            )

        logger.info(f"Worker starting import job {job_id} (mode={mode})")
        controller.prepare_csv(content, ReconciliationMode(mode))
        final = controller.run()
        return final.to_dict()
    except (ImportServiceError, FileNotFoundError) as exc:
        logger.error(f"Import job {job_id} could not run: {exc}")
        _publish_failure(reporter, str(exc))
        return reporter.latest.to_dict()
    except Exception as exc:
        logger.error(f"Import job {job_id} failed: {exc!r}", exc_info=True)
        _publish_failure(reporter, f"Import failed: {exc}")
        raise
    finally:
        publish_errors(client, job_id, controller.errors(), ttl_seconds=ttl)
        delete_upload(client, job_id)
        client.close()


def _publish_failure(reporter: ProgressReporter, message: str) -> None:
    latest = reporter.latest
    if latest.is_terminal:
        return
    failed = dataclasses.replace(
        latest,
        status=ImportStatus.ERROR,
        message=message,
        sequence=latest.sequence + 1,
    )
    reporter.publish(failed)
