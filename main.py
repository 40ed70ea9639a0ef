import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.configs.settings import settings
# Ensure all models are imported so SQLAlchemy metadata is populated
import app.models  # noqa: F401
from app.middlewares.error_handler import register_exception_handlers
from app.controllers import auth_controller, verification_controller

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(
    title=settings.APP_NAME,
    description="Account registration and email / WhatsApp / SMS verification for the property marketplace",
    version="1.0.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- Routers ---
app.include_router(auth_controller.router, prefix=f"{settings.API_V1_PREFIX}/auth", tags=["Auth"])
app.include_router(verification_controller.router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root():
    return {
        "app_name": settings.APP_NAME,
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "documentation": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
