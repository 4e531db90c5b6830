"""
Gunicorn configuration for StaticDAM

This file is pure Python. All settings include:
- The effective DEFAULT (as used here)
- How to override via environment variables
- How to reset to Gunicorn’s own default (unset env var or remove override)

Run:
  gunicorn main:app --config gunicorn.conf.py

Notes:
- Binds to 0.0.0.0 so the submit endpoint is reachable behind a proxy.
- Uses Uvicorn workers for FastAPI.
- Writes access/error logs to ./logs/ by default.
"""

import os
from pathlib import Path


# --- Paths / Logs ---
# DEFAULT: create ./logs directory (you can change with GUNICORN_LOGDIR)
LOG_DIR = Path(os.getenv("GUNICORN_LOGDIR", "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)


# --- Binding / Network ---
# DEFAULT: 0.0.0.0:8000
# Override: set env GUNICORN_BIND (e.g., "127.0.0.1:8000" to restrict to localhost)
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")


# --- Concurrency ---
# DEFAULT: 2 workers (Override via WEB_CONCURRENCY)
workers = int(os.getenv("WEB_CONCURRENCY", "2"))

# DEFAULT: Uvicorn worker class for ASGI/FastAPI
worker_class = os.getenv("GUNICORN_WORKER_CLASS", "uvicorn.workers.UvicornWorker")

# DEFAULT: do not preload the app
preload_app = os.getenv("GUNICORN_PRELOAD", "false").lower() == "true"


# --- Timeouts / Keepalive ---
# DEFAULT: 90s worker timeout; a submission makes eight sequential GitHub calls
timeout = int(os.getenv("GUNICORN_TIMEOUT", "90"))

# DEFAULT: 30s graceful timeout for worker shutdowns
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))

# DEFAULT: 5s HTTP keep-alive
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))


# --- Request size ---
# Multipart bodies are size-checked by the app (SUBMIT_MAX_BYTES); this only
# bounds the request line and header fields.
limit_request_line = int(os.getenv("GUNICORN_LIMIT_REQUEST_LINE", "4094"))
limit_request_field_size = int(os.getenv("GUNICORN_LIMIT_REQUEST_FIELD_SIZE", "8190"))


# --- Logging ---
# Reset to Gunicorn's defaults by unsetting these env vars (errorlog= '-', accesslog=None)
errorlog = os.getenv("GUNICORN_ERRORLOG", str(LOG_DIR / "gunicorn_error.log"))
accesslog = os.getenv("GUNICORN_ACCESSLOG", str(LOG_DIR / "gunicorn_access.log"))

# DEFAULT: info
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")

# DEFAULT: capture stdout/stderr from workers into error log
capture_output = os.getenv("GUNICORN_CAPTURE_OUTPUT", "true").lower() == "true"

access_log_format = os.getenv(
    "GUNICORN_ACCESS_FORMAT",
    '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"',
)


# --- Dev convenience ---
reload = os.getenv("GUNICORN_RELOAD", "false").lower() == "true"


# --- Proxies ---
forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "127.0.0.1")
