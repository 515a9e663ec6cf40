"""API v1 routes"""
from fastapi import APIRouter
from app.api.v1 import auth, subscription, devices, files, admin

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(subscription.router)
api_router.include_router(devices.router)
api_router.include_router(files.router)
api_router.include_router(admin.router)
