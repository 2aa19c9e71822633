# ============================================
# SuiviReseau - Gunicorn Configuration
# VPS 2-4 vCPU / 4-8 Go RAM
# ============================================
import os
import multiprocessing

# --- Server ---
wsgi_app = "api.index:app"
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
workers = int(os.getenv("SUIVI_RESEAU_WORKERS", min(multiprocessing.cpu_count() * 2 + 1, 8)))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000

# --- Timeouts ---
# Un flux SSE de 1000 SIRET dure plus d'une heure (2,4 s/SIRET + pauses)
timeout = 0            # workers asynchrones : les heartbeats maintiennent la connexion
graceful_timeout = 30
keepalive = 75         # superieur a l'intervalle des heartbeats (30 s)

# --- Memory ---
max_requests = 1000
max_requests_jitter = 50

# --- Logging ---
accesslog = os.getenv("SUIVI_RESEAU_ACCESS_LOG", "-")
errorlog = os.getenv("SUIVI_RESEAU_ERROR_LOG", "-")
loglevel = os.getenv("SUIVI_RESEAU_LOG_LEVEL", "info")
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)sms'

# --- Process ---
# Le cache BODACC et les limites de liens magiques sont par processus
preload_app = True
daemon = False

# --- Security ---
limit_request_line = 8190
limit_request_fields = 100
limit_request_field_size = 8190

# --- Hooks ---
def on_starting(server):
    server.log.info("SuiviReseau starting...")

def when_ready(server):
    server.log.info(f"SuiviReseau ready with {workers} workers on {bind}")

def worker_exit(server, worker):
    server.log.info(f"Worker {worker.pid} exiting")
