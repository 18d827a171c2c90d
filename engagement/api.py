import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import (
    EngagementError,
    ForbiddenError,
    InsufficientTokensError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthenticatedError,
)
from .models import (
    BalanceResponse,
    GrantTokensRequest,
    LedgerAudit,
    Message,
    PostMessageRequest,
    Provider,
    ProviderBalance,
    PurchaseTokensRequest,
    QuoteRequest,
    RefundTokensRequest,
    RegisterProviderRequest,
    SubmitQuoteRequest,
    SubmitQuoteResponse,
    TokenStatusResponse,
    UnlockPreview,
    UpdateStatusRequest,
)
from .service import EngagementService

logger = logging.getLogger(__name__)


def http_error(e: EngagementError) -> Exception:
    # Rendered by the app-level handler with a flat top-up body
    if isinstance(e, InsufficientTokensError):
        return e
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, UnauthenticatedError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    if isinstance(e, InvalidInputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, InvalidStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def get_service(request: Request) -> EngagementService:
    if request.app.state.service is None:
        request.app.state.service = EngagementService()
    return request.app.state.service


def caller_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    # Session issuance lives upstream; it forwards the authenticated user id
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return x_user_id


def optional_caller_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_id or None


def create_app(service: Optional[EngagementService] = None) -> FastAPI:
    app = FastAPI(
        title="Engagement Ledger API",
        description="Token-gated access to quote requests with an append-only token ledger",
        version="1.0.0",
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InsufficientTokensError)
    async def insufficient_tokens(request: Request, exc: InsufficientTokensError):
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={"error": "INSUFFICIENT_TOKENS", "balance": exc.balance},
        )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception(f"{request.method} {request.url.path} failed")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "engagement-ledger"}

    # ==================== PROVIDERS ====================

    @app.post("/providers", response_model=Provider, status_code=status.HTTP_201_CREATED, tags=["Providers"])
    def register_provider(body: RegisterProviderRequest, svc: EngagementService = Depends(get_service)):
        try:
            return svc.register_provider(body.business_name, body.contact_email, body.contact_name)
        except EngagementError as e:
            raise http_error(e)

    # ==================== ADMIN ====================

    @app.post("/admin/tokens", response_model=BalanceResponse, tags=["Admin"])
    def grant_tokens(
        body: GrantTokensRequest,
        user_id: str = Depends(caller_id),
        svc: EngagementService = Depends(get_service),
    ):
        try:
            return BalanceResponse(balance=svc.grant(body.provider_id, body.amount, body.reason, user_id))
        except EngagementError as e:
            raise http_error(e)

    @app.get("/admin/tokens", response_model=list[ProviderBalance], tags=["Admin"])
    def list_balances(user_id: str = Depends(caller_id), svc: EngagementService = Depends(get_service)):
        try:
            return svc.list_balances(user_id)
        except EngagementError as e:
            raise http_error(e)

    @app.post("/admin/tokens/refund", response_model=BalanceResponse, tags=["Admin"])
    def refund_tokens(
        body: RefundTokensRequest,
        user_id: str = Depends(caller_id),
        svc: EngagementService = Depends(get_service),
    ):
        try:
            balance = svc.refund(body.provider_id, body.amount, body.reason, user_id, request_id=body.request_id)
            return BalanceResponse(balance=balance)
        except EngagementError as e:
            raise http_error(e)

    @app.get("/admin/providers/{provider_id}/audit", response_model=LedgerAudit, tags=["Admin"])
    def audit_ledger(
        provider_id: str,
        user_id: str = Depends(caller_id),
        svc: EngagementService = Depends(get_service),
    ):
        try:
            return svc.audit_ledger(provider_id, user_id)
        except EngagementError as e:
            raise http_error(e)

    # ==================== TOKENS ====================

    @app.post("/tokens/purchase", response_model=BalanceResponse, status_code=status.HTTP_201_CREATED, tags=["Tokens"])
    def purchase_tokens(
        body: PurchaseTokensRequest,
        user_id: str = Depends(caller_id),
        svc: EngagementService = Depends(get_service),
    ):
        try:
            provider_id = svc.provider_id_for_user(user_id)
            return BalanceResponse(balance=svc.purchase(provider_id, body.package.value))
        except EngagementError as e:
            raise http_error(e)

    @app.get("/tokens", response_model=TokenStatusResponse, tags=["Tokens"])
    def token_status(
        limit: Optional[int] = None,
        offset: int = 0,
        user_id: str = Depends(caller_id),
        svc: EngagementService = Depends(get_service),
    ):
        try:
            return svc.token_status(svc.provider_id_for_user(user_id), limit, offset)
        except EngagementError as e:
            raise http_error(e)

    # ==================== REQUESTS ====================

    @app.post("/requests", response_model=SubmitQuoteResponse, status_code=status.HTTP_201_CREATED, tags=["Requests"])
    def submit_request(
        body: SubmitQuoteRequest,
        user_id: Optional[str] = Depends(optional_caller_id),
        svc: EngagementService = Depends(get_service),
    ):
        try:
            return svc.submit_request(body, user_id)
        except EngagementError as e:
            raise http_error(e)

    @app.get("/requests", response_model=list[QuoteRequest], tags=["Requests"])
    def list_requests(user_id: str = Depends(caller_id), svc: EngagementService = Depends(get_service)):
        try:
            return svc.list_requests(user_id)
        except EngagementError as e:
            raise http_error(e)

    @app.get("/requests/{request_id}", response_model=QuoteRequest, tags=["Requests"])
    def get_request(request_id: str, user_id: str = Depends(caller_id), svc: EngagementService = Depends(get_service)):
        try:
            return svc.get_request(request_id, user_id)
        except EngagementError as e:
            raise http_error(e)

    @app.get("/requests/{request_id}/unlock", response_model=UnlockPreview, tags=["Requests"])
    def unlock_preview(request_id: str, user_id: str = Depends(caller_id), svc: EngagementService = Depends(get_service)):
        try:
            return svc.unlock_preview(svc.provider_id_for_user(user_id), request_id)
        except EngagementError as e:
            raise http_error(e)

    @app.get("/requests/{request_id}/messages", response_model=list[Message], tags=["Requests"])
    def list_messages(request_id: str, user_id: str = Depends(caller_id), svc: EngagementService = Depends(get_service)):
        try:
            return svc.list_messages(request_id, user_id)
        except EngagementError as e:
            raise http_error(e)

    @app.patch("/requests/{request_id}", response_model=QuoteRequest, tags=["Requests"])
    def update_request_status(
        request_id: str,
        body: UpdateStatusRequest,
        user_id: str = Depends(caller_id),
        svc: EngagementService = Depends(get_service),
    ):
        try:
            return svc.update_request_status_as_user(request_id, user_id, body.status)
        except EngagementError as e:
            raise http_error(e)

    # ==================== MESSAGES ====================

    @app.post("/messages", response_model=Message, status_code=status.HTTP_201_CREATED, tags=["Messages"])
    def post_message(
        body: PostMessageRequest,
        user_id: str = Depends(caller_id),
        svc: EngagementService = Depends(get_service),
    ):
        try:
            return svc.post_message(body.request_id, user_id, body.content)
        except EngagementError as e:
            raise http_error(e)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from .config import configure_logging

    configure_logging()
    uvicorn.run(app, host="0.0.0.0", port=8000)
