"""uvicorn settings for the stock service (``uvicorn main:app`` reads these via the entrypoint)."""

import os

host = os.getenv("STOCK_SERVICE_HOST", "0.0.0.0")
port = int(os.getenv("STOCK_SERVICE_PORT", os.getenv("PORT", "9001")))
# at least two workers, one per core above that
workers = int(os.getenv("UVICORN_WORKERS", str(max(2, os.cpu_count() or 1))))
loop = "uvloop"
http = "h11"
timeout_keep_alive = int(os.getenv("UVICORN_KEEPALIVE", "5"))
log_level = os.getenv("LOG_LEVEL", "info")
