import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth import resolve_identity
from .config import configure_logging
from .errors import LedgerServiceError
from .models import (
    Account,
    ApiResponse,
    ClaimEarningsRequest,
    ClaimResult,
    CreatorEarningsView,
    CreditBalance,
    Purchase,
    PurchaseHistory,
    PurchaseReceipt,
    PurchaseRequest,
    PurchaseStats,
    SettleCreditRequest,
    SettlementResult,
    UpdatePurchaseStatusRequest,
)
from .service import LedgerService


logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)

system_router = APIRouter(tags=["System"])
purchase_router = APIRouter(prefix="/purchases", tags=["Purchases"])


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    service: LedgerService = Depends(get_ledger_service),
) -> Account:
    token = None
    if credentials and credentials.scheme.lower() == "bearer":
        token = credentials.credentials
    return resolve_identity(token, service.accounts, service.settings)


@system_router.get("/health")
def health_check():
    return {"status": "healthy", "service": "credit-ledger"}


@purchase_router.post("", response_model=ApiResponse[PurchaseReceipt], status_code=status.HTTP_201_CREATED)
def create_purchase(
    request: PurchaseRequest,
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[PurchaseReceipt]:
    receipt = service.purchase_content(account.id, request.content_id)
    return ApiResponse(message="Purchase created successfully", data=receipt)


@purchase_router.get("/my-purchases", response_model=ApiResponse[PurchaseHistory])
def get_user_purchases(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[PurchaseHistory]:
    history = service.list_purchases(account.id, limit, offset)
    return ApiResponse(message="User purchases retrieved successfully", data=history)


@purchase_router.get("/credit-balance", response_model=ApiResponse[CreditBalance])
def get_credit_balance(
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[CreditBalance]:
    balance = service.get_credit_balance(account.id)
    return ApiResponse(message="Credit balance retrieved successfully", data=balance)


@purchase_router.post("/settle-credit", response_model=ApiResponse[SettlementResult])
def settle_credit(
    request: SettleCreditRequest,
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[SettlementResult]:
    result = service.settle_credit(account.id, request.transaction_hash)
    return ApiResponse(message="Credit settled successfully", data=result)


@purchase_router.get("/creator-earnings", response_model=ApiResponse[CreatorEarningsView])
def get_creator_earnings(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[CreatorEarningsView]:
    view = service.get_creator_earnings(account.id, limit, offset)
    return ApiResponse(message="Creator earnings retrieved successfully", data=view)


@purchase_router.post("/claim-earnings", response_model=ApiResponse[ClaimResult])
def claim_earnings(
    request: ClaimEarningsRequest,
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[ClaimResult]:
    result = service.claim_earnings(account.id, request.amount)
    return ApiResponse(message="Earnings claimed and transferred successfully", data=result)


@purchase_router.get("/stats", response_model=ApiResponse[PurchaseStats])
def get_purchase_stats(
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[PurchaseStats]:
    stats = service.get_purchase_stats(account.id)
    return ApiResponse(message="Purchase statistics retrieved successfully", data=stats)


@purchase_router.get("/creator/sales", response_model=ApiResponse[PurchaseHistory])
def get_creator_sales(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[PurchaseHistory]:
    sales = service.list_creator_sales(account.id, limit, offset)
    return ApiResponse(message="Creator sales retrieved successfully", data=sales)


# Keep the id routes last so they never shadow the fixed paths above.
@purchase_router.get("/{purchase_id}", response_model=ApiResponse[Purchase])
def get_purchase(
    purchase_id: UUID,
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[Purchase]:
    purchase = service.get_purchase(account.id, purchase_id)
    return ApiResponse(message="Purchase retrieved successfully", data=purchase)


@purchase_router.put("/{purchase_id}/status", response_model=ApiResponse[Purchase])
def update_purchase_status(
    purchase_id: UUID,
    request: UpdatePurchaseStatusRequest,
    account: Account = Depends(get_current_account),
    service: LedgerService = Depends(get_ledger_service),
) -> ApiResponse[Purchase]:
    purchase = service.update_purchase_status(account.id, purchase_id, request.status)
    return ApiResponse(message="Purchase status updated successfully", data=purchase)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


async def handle_ledger_error(request: Request, exc: LedgerServiceError) -> JSONResponse:
    return _error_response(exc.status_code, exc.message)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "request"
        details.append(f"{field}: {error.get('msg')}")
    return _error_response(status.HTTP_400_BAD_REQUEST, "; ".join(details) or "Invalid request")


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def create_app(service: Optional[LedgerService] = None, root_path: str = "") -> FastAPI:
    service = service or LedgerService()
    configure_logging(service.settings.LOG_LEVEL)

    app = FastAPI(
        title="Content Credit Ledger API",
        description="Credit purchases, settlement and creator earnings claims for a content marketplace",
        version="1.0.0",
        root_path=root_path,
    )
    app.state.ledger_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=service.settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerServiceError, handle_ledger_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(system_router)
    app.include_router(purchase_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from .config import settings
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
