import logging
import math
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from fheboot import (
    AttestationEngine,
    AttestationError,
    EngineConfig,
    ErrorCode,
    EventType,
    HttpEncryptedValueService,
    InMemoryEncryptedValueService,
    Unauthorized,
)

from . import config
from .config import CALLBACK_RPM, SUBMIT_RPM, dev_endpoints_enabled, is_debug, is_production, validate_config
from .db import close_connection, get_db_stats, init_db
from .event_store import SqliteEventLog, verify_chain
from .keys import FileOracleKeyProvider
from .logging_config import audit_log, configure_logging, set_request_id
from .models import (
    BootStageRequest,
    DeliverRequest,
    EncryptRequest,
    OracleCallbackRequest,
    ReferenceRequest,
    ThresholdRequest,
)
from .rate_limit import RateLimiter
from .security import (
    ValidationError,
    extract_client_id,
    parse_cleartext,
    redact_callback,
    validate_handle_id,
    validate_identity,
    validate_request_id,
    validate_threshold,
)

configure_logging(level="DEBUG" if is_debug() else "INFO", json_format=is_production())
log = logging.getLogger("fheboot.service")

app = FastAPI(title="FHE Boot Attestation")

STATUS_BY_CODE = {
    ErrorCode.UNAUTHORIZED: 403,
    ErrorCode.NO_TRUSTED_REFERENCE: 409,
    ErrorCode.INVALID_CIPHERTEXT: 422,
    ErrorCode.INVALID_STAGE: 404,
    ErrorCode.INVALID_PROOF: 401,
    ErrorCode.UNKNOWN_REQUEST: 409,
    ErrorCode.SERVICE_ERROR: 502,
}

submit_limiter = RateLimiter(SUBMIT_RPM)
callback_limiter = RateLimiter(CALLBACK_RPM)
KEYS = None
EVS = None
ENGINE = None
EVENT_LOG = None


def build_evs(keys: FileOracleKeyProvider):
    if config.EVS_BACKEND == "http":
        return HttpEncryptedValueService(
            base_url=config.EVS_URL,
            callback_url=config.CALLBACK_URL,
            verify_key_b64=keys.oracle_verify_key(),
            timeout=config.EVS_TIMEOUT,
        )
    return InMemoryEncryptedValueService(signer=keys.load_signer())


def _audit_decision(event):
    if event.event_type in (EventType.VERIFICATION_PASSED, EventType.VERIFICATION_FAILED):
        decision = "PASSED" if event.event_type == EventType.VERIFICATION_PASSED else "FAILED"
        audit_log.decision(event.device, event.stage_index, decision, applied=True)


@app.on_event("startup")
def _startup():
    global KEYS, EVS, ENGINE, EVENT_LOG
    init_db()
    KEYS = FileOracleKeyProvider(config.ORACLE_KEY_PATH, config.TRUST_STORE_PATH)
    EVS = build_evs(KEYS)
    EVENT_LOG = SqliteEventLog()
    ENGINE = AttestationEngine(
        EVS,
        EngineConfig(
            admin_identity=config.ADMIN_IDENTITY,
            initial_threshold=config.THRESHOLD,
            oracle_verify_key_source=KEYS.oracle_verify_key,
        ),
        event_sink=EVENT_LOG,
    )
    ENGINE.subscribe(_audit_decision)
    log.info("service started (env=%s, evs=%s)", config.ENV, config.EVS_BACKEND)


@app.on_event("shutdown")
def _shutdown():
    close_connection()


@app.middleware("http")
async def _request_id(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(AttestationError)
async def _attestation_error(request: Request, exc: AttestationError):
    if exc.code == ErrorCode.UNAUTHORIZED:
        audit_log.security_event("unauthorized", severity="medium", path=request.url.path)
    return JSONResponse(status_code=STATUS_BY_CODE.get(exc.code, 500), content={"error": exc.to_dict()})


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": {"code": "VALIDATION_ERROR", "field": exc.field, "message": exc.message}},
    )


def caller_identity(x_caller_identity: Optional[str] = Header(None)) -> str:
    if not x_caller_identity:
        raise Unauthorized("missing caller identity")
    return validate_identity(x_caller_identity, "X-Caller-Identity")


def _rate_limit(limiter: RateLimiter, request: Request, endpoint: str):
    client_id = extract_client_id(dict(request.headers))
    result = limiter.check(client_id)
    if not result.allowed:
        audit_log.rate_limit_exceeded(client_id, endpoint)
        raise HTTPException(429, "RATE_LIMIT", headers={"Retry-After": str(math.ceil(result.retry_after))})


@app.get("/healthz")
def healthz():
    checks = validate_config()
    evs_available = EVS.is_available()
    return {
        "status": "ok" if evs_available and all(checks.values()) else "degraded",
        "env": config.ENV,
        "evs_backend": config.EVS_BACKEND,
        "evs_available": evs_available,
        "threshold": ENGINE.threshold,
        "pending_decryptions": ENGINE.pending_request_count(),
        "checks": checks,
        "db": get_db_stats(),
    }


# ============================================================
# Administration
# ============================================================

@app.post("/references/{device}")
def register_reference(device: str, req: ReferenceRequest, caller: str = Depends(caller_identity)):
    device = validate_identity(device, "device")
    ENGINE.register_trusted_firmware(
        caller,
        device,
        validate_handle_id(req.checksum, "checksum"),
        validate_handle_id(req.size, "size"),
        validate_handle_id(req.version, "version"),
    )
    audit_log.firmware_registered(device, caller)
    return {"device": device, "registered": True}


@app.put("/threshold")
def update_threshold(req: ThresholdRequest, caller: str = Depends(caller_identity)):
    value = validate_threshold(req.value)
    ENGINE.update_verification_threshold(caller, value)
    audit_log.threshold_updated(value, caller)
    return {"threshold": ENGINE.threshold}


# ============================================================
# Device submissions
# ============================================================

@app.post("/devices/{device}/stages")
def submit_stage(
    device: str,
    req: BootStageRequest,
    request: Request,
    caller: str = Depends(caller_identity)
):
    _rate_limit(submit_limiter, request, "submit_stage")
    device = validate_identity(device, "device")
    evidence = {}
    for name, handles in req.model_dump().items():
        if handles is None:
            continue
        evidence[name] = {
            field: validate_handle_id(value, f"{name}.{field}")
            for field, value in handles.items()
        }
    stage_index = ENGINE.verify_boot_stage(caller, device, evidence)
    audit_log.boot_attempt(device, stage_index)
    return {"device": device, "stage_index": stage_index, "decision": "PENDING"}


@app.post("/devices/{device}/stages/{stage_index}/decrypt")
def request_decryption(
    device: str,
    stage_index: int,
    request: Request,
    caller: str = Depends(caller_identity)
):
    _rate_limit(submit_limiter, request, "request_decryption")
    device = validate_identity(device, "device")
    request_id = ENGINE.request_boot_status_decryption(caller, device, stage_index)
    audit_log.decryption_requested(device, stage_index, request_id)
    return {"request_id": request_id, "device": device, "stage_index": stage_index}


# ============================================================
# Oracle callback
# ============================================================

@app.post("/oracle/callback")
def oracle_callback(req: OracleCallbackRequest, request: Request):
    _rate_limit(callback_limiter, request, "oracle_callback")
    request_id = validate_request_id(req.request_id)
    cleartext = parse_cleartext(req.cleartext)
    try:
        result = ENGINE.deliver_decryption(request_id, cleartext, req.proof)
    except AttestationError as e:
        log.warning("callback rejected: %s", redact_callback(req.model_dump()))
        audit_log.callback_rejected(request_id, e.code.value)
        raise
    if not result.applied:
        audit_log.decision(result.device, result.stage_index, result.decision.value, applied=False)
    return result.to_dict()


# ============================================================
# Reads
# ============================================================

@app.get("/devices/{device}/stages")
def list_stages(device: str):
    device = validate_identity(device, "device")
    stages = ENGINE.list_stage_statuses(device)
    return {"device": device, "count": len(stages), "stages": [s.to_dict() for s in stages]}


@app.get("/devices/{device}/stages/{stage_index}")
def get_stage(device: str, stage_index: int):
    device = validate_identity(device, "device")
    return ENGINE.get_stage_status(device, stage_index).to_dict()


@app.get("/devices/{device}/summary")
def device_summary(device: str):
    device = validate_identity(device, "device")
    return ENGINE.get_device_summary(device).to_dict()


@app.get("/events")
def list_events(event_type: Optional[str] = None, device: Optional[str] = None):
    kind = None
    if event_type:
        try:
            kind = EventType(event_type)
        except ValueError:
            raise ValidationError("event_type", "unknown event type")
    return [e.to_dict() for e in EVENT_LOG.query(event_type=kind, device=device)]


@app.get("/events/export")
def export_events():
    return EVENT_LOG.export()


@app.get("/events/verify")
def verify_events():
    return verify_chain(EVENT_LOG.export())


# ============================================================
# Development helpers (in-memory backend only)
# ============================================================

def _require_dev():
    if not dev_endpoints_enabled():
        raise HTTPException(404, "NOT_FOUND")


@app.post("/dev/encrypt")
def dev_encrypt(req: EncryptRequest):
    _require_dev()
    return {"handle": EVS.encrypt(req.plaintext).handle_id}


@app.post("/dev/deliver")
def dev_deliver(req: DeliverRequest):
    _require_dev()
    request_id = validate_request_id(req.request_id) if req.request_id else None
    outcomes = EVS.deliver_pending(request_id)
    for outcome in outcomes:
        if not outcome.delivered:
            audit_log.callback_rejected(outcome.request_id, outcome.error)
    return {
        "delivered": [
            {"request_id": o.request_id, "delivered": o.delivered, "error": o.error}
            for o in outcomes
        ]
    }
