import uvicorn
import time
import logging
from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from secfix.api.remediation import router as remediation_router
from secfix.api.status import router as status_router
from secfix.utils.logging_config import setup_logging

setup_logging(level=logging.INFO)
logger = logging.getLogger("main")

app = FastAPI(title="Security Remediation Agent API")

# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info(f"Incoming: {request.method} {request.url.path} from {client_host}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Request failed: {request.method} {request.url.path} - Error: {e}")
            raise
        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Outgoing: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {elapsed_ms:.2f}ms"
        )
        return response

app.add_middleware(LoggingMiddleware)

# ---------------------------------------------------------------------------
# CORS for local dashboards
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/health")
async def health_check():
    return {"status": "ok"}

app.include_router(remediation_router, tags=["Remediation"])
app.include_router(status_router, tags=["Remediation"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
