import atexit
import os
from flask import Flask
import logging
from logging.handlers import RotatingFileHandler


LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s [in %(pathname)s:%(lineno)d]'


def _configure_file_logging(app: Flask) -> None:
    """Пишет логи приложения и сервисов (логгер 'timetable_sync') в ротируемый файл."""
    logs_dir = app.config['LOG_DIR']
    os.makedirs(logs_dir, exist_ok=True)
    # Каталог снимка нужен до первого запроса к синхронизатору
    os.makedirs(os.path.dirname(app.config['SNAPSHOT_FILE']), exist_ok=True)

    level = logging.getLevelName(app.config.get('LOG_LEVEL', 'INFO'))
    file_handler = RotatingFileHandler(os.path.join(logs_dir, 'app.log'), maxBytes=10240, backupCount=10)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.setLevel(level)

    for logger in (app.logger, logging.getLogger(__name__)):
        logger.addHandler(file_handler)
        logger.setLevel(level)


def create_app(config_object='config.Config'):
    app = Flask(__name__)
    app.config.from_object(config_object)

    if not app.debug and not app.testing:
        _configure_file_logging(app)
        app.logger.info('Сервис расписания запущен')

    from .services.core.runtime import EXTENSION_KEY, ServiceRuntime
    runtime = ServiceRuntime(app.config)
    app.extensions[EXTENSION_KEY] = runtime
    if not app.testing:
        atexit.register(runtime.shutdown)

    from . import api_routes
    app.register_blueprint(api_routes.bp)

    return app
