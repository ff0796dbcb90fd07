from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
import logging, uuid

from .config import settings
from .logging_conf import configure_logging
from .routes.calculate import router as calculate_router
from .routes.calibration import router as calibration_router
from .routes.tracking import router as tracking_router

configure_logging()
log = logging.getLogger(__name__)

app = FastAPI(title="ToricGuide Axis Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.allow_origin] if settings.allow_origin != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

app.add_middleware(RequestIdMiddleware)

app.include_router(calculate_router, prefix="/calculate", tags=["calculate"])
app.include_router(calibration_router, prefix="/calibration", tags=["calibration"])
app.include_router(tracking_router, prefix="/tracking", tags=["tracking"])

@app.get("/")
def root():
    return {"ok": True, "service": "toricguide", "data_dir": settings.data_dir}

@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "toricguide", "version": "1.0.0"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
