import os
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv
load_dotenv()  # Load .env file for local development

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.database import get_db_pool, close_db_pool, run_schema_migrations
from src.exceptions import register_exception_handlers
from src.routers import health_router, vapi_router, maintenance_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - database pool and schema on startup."""
    pool = await get_db_pool()
    await run_schema_migrations(pool)
    yield
    # Cleanup on shutdown
    await close_db_pool()


app = FastAPI(title="Coya Call Pipeline", lifespan=lifespan)

# CORS middleware for the operator dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=True,
)

register_exception_handlers(app)

app.include_router(health_router)
app.include_router(vapi_router)
app.include_router(maintenance_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
