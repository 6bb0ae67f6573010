import logging
from time import perf_counter
from typing import Annotated, Awaitable, Callable, Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from application.services import (
    ShopPolicy,
    authenticate,
    buy_item,
    get_info,
    logout,
    resolve_session,
    send_coins,
)
from domain.errors import (
    ConflictError,
    FatalStoreError,
    InvalidCredentialsError,
    InvalidRequestError,
    LedgerError,
    StoreError,
    TransientStoreError,
    UnauthorizedError,
)
from domain.repositories import LedgerRepository, SessionRepository, UserRepository
from interfaces.http.schemas import (
    AuthRequest,
    AuthResponse,
    ErrorResponse,
    InfoResponse,
    SendCoinRequest,
)


log = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

ERROR_RESPONSES = {
    status_code: {"model": ErrorResponse}
    for status_code in (400, 401, 500, 503)
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(errors=message).model_dump())


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise UnauthorizedError("Authorization header required.")
    if not authorization.startswith(BEARER_PREFIX):
        raise UnauthorizedError("Authorization header must use the Bearer scheme.")
    return authorization[len(BEARER_PREFIX):].strip()


def create_http_app(
    user_repo: UserRepository,
    ledger_repo: LedgerRepository,
    session_repo: SessionRepository,
    policy: ShopPolicy,
) -> FastAPI:
    """
    Configure and return the FastAPI application wired to the application layer.

    This module contains only HTTP concerns: decoding requests, resolving the
    bearer token to a username, and mapping results and errors to status
    codes. The resolved username is passed explicitly into every service call.
    """

    app = FastAPI(title="Coin Shop", version="0.1.0")

    @app.middleware("http")
    async def log_process_time(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start_time = perf_counter()
        response = await call_next(request)
        process_time = perf_counter() - start_time
        log.info(
            "%s %s -> %d (%.4fs)",
            request.method,
            request.url.path,
            response.status_code,
            process_time,
        )
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Invalid request.")

    @app.exception_handler(InvalidRequestError)
    async def handle_invalid_request(request: Request, exc: InvalidRequestError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(LedgerError)
    async def handle_ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(InvalidCredentialsError)
    async def handle_invalid_credentials(request: Request, exc: InvalidCredentialsError) -> JSONResponse:
        return _error(401, str(exc))

    @app.exception_handler(UnauthorizedError)
    async def handle_unauthorized(request: Request, exc: UnauthorizedError) -> JSONResponse:
        return _error(401, str(exc))

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
        return _error(409, str(exc))

    @app.exception_handler(TransientStoreError)
    async def handle_transient_store_error(request: Request, exc: TransientStoreError) -> JSONResponse:
        log.warning("Store busy while serving %s %s: %s", request.method, request.url.path, exc)
        return _error(503, "Service is busy, please retry.")

    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
        if isinstance(exc, FatalStoreError):
            log.critical("Fatal store error: %s", exc, exc_info=exc)
        else:
            log.error("Store error: %s", exc, exc_info=exc)
        return _error(500, "Internal server error.")

    def current_username(authorization: Annotated[Optional[str], Header()] = None) -> str:
        token = _bearer_token(authorization)
        return resolve_session(token, session_repo)

    @app.post("/api/auth", response_model=AuthResponse, responses=ERROR_RESPONSES)
    def auth(body: AuthRequest) -> AuthResponse:
        result = authenticate(body.username, body.password, user_repo, session_repo, policy)
        if not result.success:
            raise result.error
        return AuthResponse(token=result.token)

    @app.post("/api/logout", responses=ERROR_RESPONSES)
    def logout_endpoint(
        username: Annotated[str, Depends(current_username)],
        authorization: Annotated[Optional[str], Header()] = None,
    ) -> Response:
        logout(_bearer_token(authorization), session_repo)
        return Response(status_code=200)

    @app.get("/api/info", response_model=InfoResponse, responses=ERROR_RESPONSES)
    def info(username: Annotated[str, Depends(current_username)]) -> InfoResponse:
        result = get_info(username, user_repo, ledger_repo)
        if not result.success:
            raise result.error
        return InfoResponse.build(result.coins, result.inventory, result.coin_history)

    @app.post("/api/sendCoin", responses=ERROR_RESPONSES)
    def send_coin(
        body: SendCoinRequest,
        username: Annotated[str, Depends(current_username)],
    ) -> Response:
        result = send_coins(username, body.to_user, body.amount, ledger_repo, policy)
        if not result.success:
            raise result.error
        return Response(status_code=200)

    @app.get("/api/buy/{item}", responses=ERROR_RESPONSES)
    def buy(item: str, username: Annotated[str, Depends(current_username)]) -> Response:
        result = buy_item(username, item, ledger_repo, policy)
        if not result.success:
            raise result.error
        return Response(status_code=200)

    return app
