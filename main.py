import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from middleware.auth_middleware import FirebaseAuthMiddleware
from middleware.error_handlers import install_error_handlers
from routes import auth_routes, chat_routes, match_routes, user_routes
from utils.background import drain

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight statistics and repair writes finish before exiting
    await drain()
    logger.info("Background tasks drained")


app = FastAPI(
    title="Chat Sync Backend",
    description="Profiles, conversations, presence and match suggestions for the dating app",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update this with your frontend URL in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add paths that should be excluded from authentication
excluded_paths = [
    r"^/$",  # Root path
    r"^/docs$",  # Swagger UI
    r"^/openapi.json$",  # OpenAPI schema
    r"^/redoc$",  # ReDoc UI
]
app.add_middleware(FirebaseAuthMiddleware, exclude_paths=excluded_paths)

install_error_handlers(app)

# Include routers
app.include_router(auth_routes.router)
app.include_router(user_routes.router)
app.include_router(chat_routes.router)
app.include_router(match_routes.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "name": "Chat Sync Backend API",
        "version": "1.0.0",
        "status": "running"
    }

if __name__ == '__main__':
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
