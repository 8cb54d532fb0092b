from fastapi import APIRouter

from app.api.v1.routers import (
    health,
    installments,
    kyc,
    loan_applications,
    loan_products,
    loan_reviews,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(loan_products.router)
api_router.include_router(loan_applications.router)
api_router.include_router(loan_reviews.router)
api_router.include_router(kyc.router)
api_router.include_router(installments.router)

__all__ = ["api_router"]
