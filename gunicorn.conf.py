# Gunicorn configuration file for CampusVote
# https://docs.gunicorn.org/en/stable/settings.html
#
#   gunicorn -c gunicorn.conf.py "campusvote:create_app()"

import multiprocessing
import os

# Server socket
bind = os.environ.get('GUNICORN_BIND', "127.0.0.1:5000")  # Nginx proxies in front
backlog = 2048

# Worker processes
workers = int(os.environ.get('GUNICORN_WORKERS', multiprocessing.cpu_count() * 2 + 1))
worker_class = "sync"
timeout = 60  # token and ledger calls are short; chain work happens in the engine
keepalive = 5
max_requests = 1000  # Restart workers after this many requests
max_requests_jitter = 50

# Server mechanics
daemon = False  # Let systemd manage the daemon
pidfile = "/run/campusvote/gunicorn.pid"
user = "www-data"
group = "www-data"

# Logging
errorlog = "/var/log/campusvote/gunicorn-error.log"
accesslog = "/var/log/campusvote/gunicorn-access.log"
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = "campusvote"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def post_fork(server, worker):
    """Each worker gets its own database connections."""
    server.log.info(f"Worker spawned (pid: {worker.pid})")
