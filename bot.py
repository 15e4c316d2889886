import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Request

from config import LOG_LEVEL, PORT
from handlers import handle_telegram_message
from kv_store import KVStore, create_store
from manage import provide_store, router as manage_router
from media_group import drain_finalizers
from telegram_api import close_clients

# ---------------------------
# Logging setup
# ---------------------------
logging.basicConfig(level=LOG_LEVEL,
                    format="%(asctime)s %(levelname)s %(message)s",
                    stream=sys.stdout
                   )
log = logging.getLogger("imgbed-bot")


# ---------------------------
# Application
# ---------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "store", None) is None:
        app.state.store = create_store()
    yield
    # finalize tasks must run to completion before the store goes away
    await drain_finalizers()
    await close_clients()
    await app.state.store.close()


app = FastAPI(title="Telegram image bot", lifespan=lifespan)
app.include_router(manage_router)


@app.get("/health")
async def health():
    return {"ok": True}


# ---------------------------
# Telegram webhook
# ---------------------------
@app.post("/webhook/telegram")
async def telegram_webhook(request: Request, store: KVStore = Depends(provide_store)):
    # Always answer 200 so Telegram does not retry the update
    try:
        payload = await request.json()
        result = await handle_telegram_message(payload, store)
    except Exception as e:
        log.exception(f"❌ Webhook error: {e}")
        return {"ok": True, "error": "Internal error"}

    if result["success"]:
        return {"ok": True, "fileId": result.get("file_id")}

    log.info(f"⏭ Message not processed: {result['reason']}")
    return {"ok": True, "skipped": True, "reason": result["reason"]}


if __name__ == "__main__":
    log.info(f"🤖 Bot webhook listening on port {PORT}...")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
