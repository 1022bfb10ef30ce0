"""
HTTP boundary for a single guard.

Rejections become HTTP errors whose detail is the reason code:

    403  BAD_SIGNATURE, UNAUTHORIZED_SENDER
    409  counter, expiry, blocking and state-machine conflicts
    410  NOT_INSTALLED (never installed, or destroyed)
    422  MALFORMED_REQUEST and schema errors
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .account import InMemoryAccount
from .config import (
    ACCOUNT_ADDRESS,
    DB_PATH,
    ENV,
    GUARD_ADDRESS,
    LOG_JSON,
    LOG_LEVEL,
    GuardConfig,
    is_debug,
    is_production,
    validate_config,
)
from .errors import GuardRejection, RejectReason
from .fees import estimate_total_cost
from .guard import GuardDecision, RequestOrigin, TwoFactorGuard
from .logging_config import configure_logging, set_request_id
from .models import FeeEstimateRequest, InstallRequest, SubmitRequest
from .store import SqliteGuardStore
from .util import b64e


logger = logging.getLogger(__name__)

STATUS_BY_REASON = {
    RejectReason.BAD_SIGNATURE: 403,
    RejectReason.UNAUTHORIZED_SENDER: 403,
    RejectReason.INVALID_COUNTER: 409,
    RejectReason.EXPIRED: 409,
    RejectReason.BLOCKED_BY_RECOVERY: 409,
    RejectReason.DUPLICATE_ID: 409,
    RejectReason.UNKNOWN_ID: 409,
    RejectReason.PARAMETER_MISMATCH: 409,
    RejectReason.NOT_PENDING: 409,
    RejectReason.DELAY_NOT_ELAPSED: 409,
    RejectReason.UNSUPPORTED_OPERATION: 409,
    RejectReason.ALREADY_INSTALLED: 409,
    RejectReason.NOT_INSTALLED: 410,
    RejectReason.MALFORMED_REQUEST: 422,
}


def status_for(reason: Optional[RejectReason]) -> int:
    return STATUS_BY_REASON.get(reason, 400)


def _raise_if_rejected(decision: GuardDecision) -> dict:
    if not decision.accepted():
        raise HTTPException(status_for(decision.reason), decision.reason.value)
    return decision.to_dict()


def create_app(guard: TwoFactorGuard) -> FastAPI:
    """Build the HTTP service around an existing guard."""
    app = FastAPI(title="TFA Guard", debug=is_debug())
    app.state.guard = guard

    @app.middleware("http")
    async def bind_request_id(request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(GuardRejection)
    async def _rejection(request: Request, exc: GuardRejection):
        return JSONResponse(status_code=status_for(exc.reason), content={"detail": exc.reason.value})

    @app.get("/health")
    def health():
        body = {"status": "ok", "env": ENV, "installed": guard.is_installed()}
        if not is_production():
            body["checks"] = validate_config()
        return body

    @app.post("/install")
    def install(req: InstallRequest):
        return _raise_if_rejected(guard.install(req.sender, req.credentials))

    @app.post("/requests")
    def submit(req: SubmitRequest):
        decision = guard.handle(
            req.request.model_dump(exclude_none=True),
            origin=RequestOrigin(req.origin),
            sender=req.sender,
        )
        return _raise_if_rejected(decision)

    @app.get("/counter")
    def counter():
        return {"replay_counter": guard.get_counter()}

    @app.get("/credentials")
    def credentials():
        return guard.get_credentials()

    @app.get("/devices/{device_id}")
    def device(device_id: int):
        pubkey = guard.get_device_pubkey(device_id)
        if pubkey is None:
            raise HTTPException(404, "NOT_FOUND")
        return {"device_id": device_id, "device_pubkey": b64e(pubkey)}

    @app.get("/state")
    def state():
        return guard.snapshot()

    @app.post("/fees/estimate")
    def fees(req: FeeEstimateRequest):
        try:
            return estimate_total_cost(
                req.forward_message,
                req.output_message_count,
                req.extended_action_count,
                guard.fee_schedule,
            )
        except ValueError as e:
            raise HTTPException(422, str(e))

    return app


def create_default_app() -> FastAPI:
    """Development server: SQLite-backed guard over an in-memory account."""
    configure_logging(level=LOG_LEVEL, json_format=LOG_JSON)
    guard = TwoFactorGuard(
        GUARD_ADDRESS,
        InMemoryAccount(ACCOUNT_ADDRESS),
        store=SqliteGuardStore(DB_PATH),
        config=GuardConfig.from_env(),
    )
    logger.info("Serving guard %s for account %s", GUARD_ADDRESS, ACCOUNT_ADDRESS)
    return create_app(guard)
