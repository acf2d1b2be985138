from __future__ import annotations

import logging

from fastapi import FastAPI

from .config import CALENDAR_BACKEND, INTENT_SOURCE, LOG_LEVEL
from .routes import router

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="schedule-agent")
app.include_router(router)
logger.info("schedule-agent ready: backend=%s intent_source=%s",
            CALENDAR_BACKEND, INTENT_SOURCE)


@app.get("/health")
def health():
  return {"status": "ok"}
