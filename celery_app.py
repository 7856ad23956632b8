from celery import Celery
from flask import has_app_context
from celery.schedules import crontab

from app_factory import create_app


def make_celery(app):
    celery = Celery(
        app.import_name,
        broker=app.config["CELERY_BROKER_URL"],
        backend=app.config["CELERY_RESULT_BACKEND"],
        include=["tasks"]
    )

    celery.conf.update(
        task_always_eager=app.config.get("CELERY_TASK_ALWAYS_EAGER", False),
        timezone="UTC",
    )

    class ContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            if has_app_context():
                return super().__call__(*args, **kwargs)
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery.Task = ContextTask
    return celery


flask_app = create_app()
celery = make_celery(flask_app)

celery.conf.beat_schedule = {
    "daily-summary-job": {
        "task": "tasks.send_daily_summary",
        "schedule": crontab(hour=18, minute=0),
    }
}
