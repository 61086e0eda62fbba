import os

from apscheduler.schedulers.background import BackgroundScheduler

from lnkiq.services.device_cleanup import cleanup_expired_devices


scheduler = BackgroundScheduler()


def run_device_cleanup(app):
    with app.app_context():
        return cleanup_expired_devices()


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["DEVICE_CLEANUP_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_device_cleanup,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="expired_device_cleanup",
            replace_existing=True,
        )
        scheduler.start()
