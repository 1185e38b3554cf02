import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.v1.api import api_router
from app.config import settings
from app.database import engine, Base
from app.services.errors import ValidationError
from app.utils.logger import get_logger
from app import models  # noqa: F401  (registers tables on Base.metadata)

# Load environment variables from .env
from dotenv import load_dotenv
load_dotenv()

logger = get_logger("main")

app = FastAPI(
    title="Mail Tracker",
    description="Send email through Gmail/Outlook with per-recipient open and click tracking",
    version="1.0.0"
)

origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    """Create database tables on startup."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    # oauthlib only reads this flag from the environment
    if settings.OAUTHLIB_RELAX_TOKEN_SCOPE:
        os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


@app.exception_handler(ValidationError)
def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning(f"Validation failed on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Validation failed",
            "message": str(exc),
            "field": exc.field,
        }
    )


app.include_router(api_router)


@app.get("/")
def health_check():
    return {"status": "ok", "service": "mail_tracker"}
