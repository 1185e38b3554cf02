from fastapi import APIRouter
from app.api.v1.endpoints import connections, email, tracking

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(email.router)
api_router.include_router(tracking.router)
api_router.include_router(connections.router)
