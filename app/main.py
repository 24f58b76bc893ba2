from contextlib import asynccontextmanager
from fastapi import FastAPI
from app.dependencies import engine, init_db
from app.log import configure_logging
from app.routers import jobs, websocket, health

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db(engine)
    yield

app = FastAPI(title="procqueue", lifespan=lifespan)

app.include_router(jobs.router, prefix="/api/v1")
app.include_router(websocket.router)
app.include_router(health.router, prefix="/api/v1")
