import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from handler import chat_stream, init_browser, close_browser
import handler
from contextlib import asynccontextmanager
import uvicorn
from config import settings
from errors import RelayError, StartupFailure

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_browser()
    except StartupFailure as e:
        # Serving against a half-started browser is worse than exiting and being restarted.
        logger.critical(f"Could not start the browser, exiting: {e.message}")
        raise
    yield
    await close_browser()

app = FastAPI(title="Arena Relay", lifespan=lifespan)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

@app.post("/chat")
@limiter.limit(f"{settings.MAX_REQUESTS_PER_MIN}/minute")
async def chat(request: Request):
    return StreamingResponse(
        await chat_stream(request),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )

@app.get("/health")
async def health():
    session = handler.relay.session
    state = session.state.value
    if not session.is_ready:
        return JSONResponse(status_code=503, content={"status": "unavailable", "browser": state})
    return {"status": "ok", "browser": state, "active_relays": handler.relay.bridge.active}

if __name__ == "__main__":
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL)
