from flask import Flask

from lnkiq.api import api_bp
from lnkiq.auth import auth_bp
from lnkiq.config import Config
from lnkiq.extension import extension_bp
from lnkiq.extensions import db, login_manager, migrate
from lnkiq.jobs.scheduler import start_scheduler
from lnkiq.services.device_cleanup import cleanup_expired_devices


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(extension_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized lnkiq database.")

    @app.cli.command("cleanup-devices")
    def cleanup_devices_command():
        deleted = cleanup_expired_devices()
        print(f"Deleted {deleted} expired anonymous devices.")

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
