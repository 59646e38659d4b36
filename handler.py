import json
import logging
from fastapi import Request
from browser import BrowserManager
from bridge import ChunkBridge
from errors import InvalidRequest, RelayError
from models import parse_chat_request
from relay import StreamingRelay

logger = logging.getLogger(__name__)

bm = BrowserManager()
bridge = ChunkBridge()
relay = StreamingRelay(bm, bridge)

async def init_browser():
    await bm.init_browser(bridge)

async def close_browser():
    await bm.close()

async def chat_stream(request: Request):
    try:
        relay.ensure_ready()
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidRequest("Request body must be valid JSON.")
        chat = parse_chat_request(data)
    except RelayError as e:
        logger.warning(f"Rejected chat request: {e.message}")
        raise

    session = await relay.open(chat)
    return session.chunks()
