from fastapi import APIRouter

from payout_ledger.api.v1.endpoints import disputes, ledger, payouts, settlements, webhooks

api_router = APIRouter()

api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(ledger.router, prefix="/ledger", tags=["ledger"])
api_router.include_router(payouts.router, prefix="/payouts", tags=["payouts"])
api_router.include_router(settlements.router, prefix="/settlements", tags=["settlements"])
api_router.include_router(disputes.router, tags=["disputes"])
