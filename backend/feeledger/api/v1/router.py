# feeledger/api/v1/router.py
# Registers all endpoint routers under /api/v1

from fastapi import APIRouter
from feeledger.api.v1.endpoints import (
    academic,
    fees,
    payments,
)

api_router = APIRouter()

api_router.include_router(academic.router, prefix="/academic")
api_router.include_router(fees.router, prefix="/fees")
api_router.include_router(payments.router)
