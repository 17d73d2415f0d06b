"""
Celery worker configuration for periodic jobs.
"""
from celery import Celery
from celery.schedules import crontab
from campus_rfid.config import settings

# Create Celery app
celery_app = Celery(
    "campus_rfid_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "worker.tasks.notification_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.CAMPUS_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Task routes
    task_routes={
        "worker.tasks.notification_tasks.*": {"queue": "notifications"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "send-attendance-warnings": {
            "task": "worker.tasks.notification_tasks.send_attendance_warnings",
            "schedule": crontab(hour=18, minute=0),  # Daily, campus time
        },
    }
)

if __name__ == "__main__":
    celery_app.start()
