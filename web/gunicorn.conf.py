# Gunicorn settings for the POS web app: gunicorn -c gunicorn.conf.py config.wsgi
import os

wsgi_app = "config.wsgi:application"
bind = os.getenv("POS_BIND", "0.0.0.0:8000")

# Checkout is I/O bound (database, inventory service): few processes, several threads each
workers = int(os.getenv("POS_WORKERS", str(min(max(2, (os.cpu_count() or 1) * 2), 8))))
worker_class = "gthread"
threads = int(os.getenv("POS_THREADS", "4"))

timeout = int(os.getenv("POS_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("POS_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("POS_KEEPALIVE", "5"))

preload_app = True
max_requests = int(os.getenv("POS_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("POS_MAX_REQUESTS_JITTER", "200"))

# App logs are JSON (config.settings.LOGGING); gunicorn's own go to stdout/stderr
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("POS_LOGLEVEL", "info")
