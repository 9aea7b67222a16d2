# app/api/v1/api.py
from fastapi import APIRouter

from app.api.v1.routes import goals, holdings, internal_transfer, invest, swap, users

api_router = APIRouter()

api_router.include_router(users.router)
api_router.include_router(goals.router)
api_router.include_router(holdings.router)
api_router.include_router(invest.router)
api_router.include_router(swap.router)
api_router.include_router(internal_transfer.router)
