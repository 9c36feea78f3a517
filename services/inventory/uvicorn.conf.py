# Settings for `uvicorn main:app`, read by the container entrypoint
import os

host = os.getenv("INVENTORY_HOST", "0.0.0.0")
port = int(os.getenv("PORT", "9001"))
# Decrements lock rows in the database, so extra workers only add throughput
workers = int(os.getenv("UVICORN_WORKERS", str(max(2, (os.cpu_count() or 1)))))
loop = "uvloop"  # needs uvicorn[standard]
http = "h11"
log_level = os.getenv("LOG_LEVEL", "info")
