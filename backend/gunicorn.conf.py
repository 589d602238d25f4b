import os

# App
wsgi_app = "authsessions:create_app()"

# Bind & workers
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.getenv("GUNICORN_WORKERS", "2"))
threads = int(os.getenv("GUNICORN_THREADS", "4"))
# Longer than the store command timeout so a slow Redis yields a 503, not a killed worker.
timeout = 60
graceful_timeout = 30
keepalive = 5

# Logs to stdout/stderr (collected by Docker)
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()

forwarded_allow_ips = "*"
proxy_protocol = False


def worker_exit(server, worker):
    """Close the session store connection owned by the exiting worker."""
    app = getattr(worker, "wsgi", None)
    if app is None:
        return
    from authsessions.core.extensions import shutdown

    shutdown(app)
