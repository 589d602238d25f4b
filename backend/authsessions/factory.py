"""Application factory wiring Flask extensions and blueprints."""

from __future__ import annotations

from flask import Flask

from authsessions.core.config import BaseConfig, get_config
from authsessions.core.extensions import SessionBackend
from authsessions.core.logger import configure_logging
from authsessions.core.logger import init_app as init_logging


def create_app(
    config: str | type[BaseConfig] | object | None = None,
    *,
    session_backend: SessionBackend | None = None,
    instance_relative_config: bool = True,
    instance_config_filename: str = "config.py",
) -> Flask:
    """Build and configure the Flask application.

    :param config: Config object or import path; inferred from ``APP_ENV`` when omitted.
    :param session_backend: Pre-built store backend; selected from config when omitted.
    """

    app = Flask(__name__, instance_relative_config=instance_relative_config)

    app.config.from_object(get_config() if config is None else config)
    if instance_relative_config and instance_config_filename:
        app.config.from_pyfile(instance_config_filename, silent=True)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    from authsessions.core import extensions

    extensions.init_app(app, backend=session_backend)

    init_logging(app)

    from authsessions.api import init_app as init_api

    init_api(app)

    from authsessions.core import errors

    errors.init_app(app)

    from authsessions import cli as app_cli

    app_cli.init_app(app)

    return app
