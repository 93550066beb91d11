#!/usr/bin/env python3
"""Start a Celery worker (with embedded beat) for containerized environments."""

import sys
import warnings

# Suppress the superuser privilege warning
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from enricher.workers.celery_app import QUEUES, celery_app

if __name__ == '__main__':
    celery_app.worker_main(
        argv=[
            'worker',
            '--loglevel=info',
            f"--queues={','.join(QUEUES)}",
            '--pool=solo',
            '--beat',
            '--without-mingle',
            '--without-gossip',
        ]
        + sys.argv[1:]
    )
