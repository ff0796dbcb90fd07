import logging, sys

from .config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"

class RequestIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return True

def configure_logging(level: str | None = None):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
    # configure_logging may run once per app import; avoid duplicate handlers
    for existing in root.handlers:
        if any(isinstance(f, RequestIdFilter) for f in existing.filters):
            return
    root.addHandler(handler)
