from fastapi import FastAPI

from .config import settings
from .db import init_db
from .routes import api_router
from .seed import seed_data

app = FastAPI(title="TimeSlot API")


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    if settings.seed_demo_data:
        seed_data()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


app.include_router(api_router, prefix="/api")
