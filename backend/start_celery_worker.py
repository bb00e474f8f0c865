#!/usr/bin/env python3
"""Start a Celery worker for the imports queue in containerized environments."""

import sys
import warnings

# Containers commonly run as root
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from inventory_import.workers.celery_app import celery_app

if __name__ == '__main__':
    celery_app.worker_main(
        argv=[
            'worker',
            '--loglevel=info',
            '--queues=imports',
            # Pause waits block the worker thread, so one import per process
            '--pool=solo',
            '--without-mingle',
            '--without-gossip',
        ] + sys.argv[1:]
    )
