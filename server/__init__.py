import logging
import os
from typing import Dict

# PyPI:
from fastapi import FastAPI
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware

import feeder
import feeder.sentry

import server.feeds as feeds
import server.health as health
from server.util import api_method

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Feeder",
    description="Feed ingestion worker control",
    version=feeder.VERSION,
)
app.include_router(feeds.router)
app.include_router(health.router)

if feeder.sentry.init():
    app.add_middleware(SentryAsgiMiddleware)


@app.get("/api/version")        # NOTE! NOT protected!
@api_method
def version() -> Dict:
    return {'GIT_REV': os.environ.get('GIT_REV')}


# main in scripts/server.py
