# gunicorn.conf.py
# Production server settings for the EventChasor API
# Priority: environment variable > config.yaml (performance.gunicorn) > default
import multiprocessing
import os
import sys

# src/ on the path so config_manager imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

try:
    from config_manager import get_config
    gunicorn_cfg = get_config().get('performance.gunicorn', {}) or {}
except Exception as e:
    print(f"[GUNICORN] Warning: Could not load config.yaml: {e}")
    print(f"[GUNICORN] Using default values and environment variables")
    gunicorn_cfg = {}


def get_config_value(env_var, yaml_key, default):
    """ENV > YAML > DEFAULT"""
    env_value = os.getenv(env_var)
    if env_value is not None:
        return int(env_value) if isinstance(default, int) else env_value
    yaml_value = gunicorn_cfg.get(yaml_key)
    if yaml_value is not None:
        return yaml_value
    return default

# ============================================================================
# Server
# ============================================================================

bind = get_config_value("BIND", "bind", "0.0.0.0:8000")

# Each worker holds its own extraction cache in memory; snapshots are last-write-wins
_workers_cfg = get_config_value("WEB_WORKERS", "workers", None)
workers = int(_workers_cfg) if _workers_cfg else multiprocessing.cpu_count() + 1

worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = get_config_value("WORKER_CONNECTIONS", "worker_connections", 1000)
threads = 1

# ============================================================================
# Logging
# ============================================================================

accesslog = "-"
errorlog = "-"
loglevel = get_config_value("LOG_LEVEL", "log_level", "info")
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# ============================================================================
# Processes and timeouts
# ============================================================================

max_requests = get_config_value("MAX_REQUESTS", "max_requests", 1000)
max_requests_jitter = get_config_value("MAX_REQUESTS_JITTER", "max_requests_jitter", 50)
graceful_timeout = get_config_value("GRACEFUL_TIMEOUT", "graceful_timeout", 30)

# A full run is search + up to 20 extractions with 15 s job polls
timeout = get_config_value("WORKER_TIMEOUT", "timeout", 180)
keepalive = get_config_value("KEEPALIVE", "keepalive", 5)
backlog = get_config_value("BACKLOG", "backlog", 2048)

limit_request_line = 4096
limit_request_fields = 100
limit_request_field_size = 8190

# ============================================================================
# Hooks
# ============================================================================

def on_starting(server):
    print(f"[GUNICORN] workers={workers} connections={worker_connections} timeout={timeout}s "
          f"backlog={backlog} max_requests={max_requests} loglevel={loglevel}")


def when_ready(server):
    print(f"[GUNICORN] Server is ready. Listening on: {bind}")


def on_exit(server):
    print("[GUNICORN] Server shutting down")

# Usage:
#   export WEB_WORKERS=4
#   gunicorn -c src/api/gunicorn.conf.py --chdir src api.api_server:app
