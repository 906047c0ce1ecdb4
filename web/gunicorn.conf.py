import os


def cpu():
    return max(1, (os.cpu_count() or 1))


# Worker processes
workers = int(os.getenv("GUNI_WORKERS", str(min(max(2, cpu() * 2), 8))))

# Threads per worker; handlers block on the database, the stock service and the payment provider
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "4"))

# Timeouts
timeout = int(os.getenv("GUNI_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

# Recycling
preload_app = True
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "200"))

# Logging: access log as JSON lines next to the application's JSON logs
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
access_log_format = (
    '{"ts": "%(t)s", "request_id": "%({x-request-id}o)s", "method": "%(m)s", "path": "%(U)s", '
    '"status": %(s)s, "bytes": "%(B)s", "duration_us": %(D)s, "remote": "%(h)s"}'
)
