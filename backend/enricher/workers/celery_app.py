"""Celery application for background enrichment work."""

import logging
import ssl

from celery import Celery
from celery.schedules import crontab

from enricher.core.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

broker_url = settings.celery_broker_url or settings.redis_url
backend_url = settings.celery_result_url or settings.redis_url

# Upstash only accepts TLS connections
if ".upstash.io" in broker_url and broker_url.startswith("redis://"):
    broker_url = broker_url.replace("redis://", "rediss://", 1)
if ".upstash.io" in backend_url and backend_url.startswith("redis://"):
    backend_url = backend_url.replace("redis://", "rediss://", 1)
is_ssl = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

# The Redis result backend reads ssl_cert_reqs from the URL at init time
if is_ssl:
    ssl_param = "ssl_cert_reqs=none"
    if "ssl_cert_reqs" not in broker_url:
        separator = "&" if "?" in broker_url else "?"
        broker_url = f"{broker_url}{separator}{ssl_param}"
    if "ssl_cert_reqs" not in backend_url:
        separator = "&" if "?" in backend_url else "?"
        backend_url = f"{backend_url}{separator}{ssl_param}"

celery_app = Celery(
    "contact_enrichment",
    broker=broker_url,
    backend=backend_url,
)

QUEUES = ("enrichment", "blacklist", "webhooks", "maintenance")

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after task completion
    "task_reject_on_worker_lost": True,
    "worker_prefetch_multiplier": 1,  # Fair task distribution
    "task_time_limit": 4 * 3600,
    "task_soft_time_limit": 4 * 3600 - 300,
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "worker_max_memory_per_child": settings.memory_limit_mb * 1024,  # KB
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
    "task_default_queue": "enrichment",
    "task_routes": {
        "enricher.workers.tasks.process_enrichment_job": {"queue": "enrichment"},
        "enricher.workers.tasks.import_blacklist": {"queue": "blacklist"},
        "enricher.workers.tasks.webhook_dispatch_async": {"queue": "webhooks"},
        "enricher.workers.tasks.scan_inbox": {"queue": "maintenance"},
    },
    "beat_schedule": {
        "scan-inbox": {
            "task": "enricher.workers.tasks.scan_inbox",
            "schedule": crontab(minute=f"*/{settings.inbox_scan_interval_minutes}"),
        },
    },
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"] = ssl_dict.copy()
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)

# Register tasks with the app
from enricher.workers.tasks import blacklist_import, enrichment, inbox_scan, webhook_dispatch_async  # noqa: E402,F401
