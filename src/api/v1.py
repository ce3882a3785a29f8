"""Centralized v1 API router; every module router is included here."""

from fastapi import APIRouter

from src.modules.billing.router import member_router, subscription_router
from src.modules.billing.router import router as invoice_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(invoice_router)
v1_router.include_router(member_router)
v1_router.include_router(subscription_router)
