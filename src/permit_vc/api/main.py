# SPDX-License-Identifier: MPL-2.0
"""FastAPI application for the permit credential service.

Request and response bodies use the platform envelope: callers send a
``RequestInfo`` block next to the operation payload and receive a
``ResponseInfo`` block next to the result.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from permit_vc import __version__
from permit_vc.core.canonicalization import format_timestamp
from permit_vc.core.config import Settings, configure_logging, load_settings
from permit_vc.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermitVCError,
    SignatureInfrastructureError,
    StoreUnavailable,
    ValidationError,
)
from permit_vc.services.issuer import CredentialService

logger = logging.getLogger(__name__)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])

router = APIRouter(prefix="/vc")

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    StoreUnavailable: 503,
    SignatureInfrastructureError: 500,
}


class RequestInfoModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    apiId: Optional[str] = None
    ver: Optional[str] = None
    ts: Optional[int] = None
    msgId: Optional[str] = None


class EnvelopeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_info: Optional[RequestInfoModel] = Field(default=None, alias="RequestInfo")


class CredentialRequestModel(BaseModel):
    credentialSubject: Dict[str, Any]
    holderDid: Optional[str] = None
    type: Optional[List[str]] = None


class IssueBody(EnvelopeModel):
    credential_request: CredentialRequestModel = Field(alias="CredentialRequest")


class VerificationRequestModel(BaseModel):
    vcId: Optional[str] = None
    credential: Optional[Dict[str, Any]] = None


class VerifyBody(EnvelopeModel):
    verification_request: VerificationRequestModel = Field(alias="VerificationRequest")


class RevocationRequestModel(BaseModel):
    vcId: str = Field(min_length=1)
    reason: Optional[str] = None


class RevokeBody(EnvelopeModel):
    revocation_request: RevocationRequestModel = Field(alias="RevocationRequest")


class QRRequestModel(BaseModel):
    vcId: str = Field(min_length=1)


class QRBody(EnvelopeModel):
    qr_request: QRRequestModel = Field(alias="QRRequest")


class ScanRequestModel(BaseModel):
    payload: str = Field(min_length=1)


class ScanBody(EnvelopeModel):
    scan_request: ScanRequestModel = Field(alias="ScanRequest")


def response_info(
    request_info: Optional[RequestInfoModel], default_api_id: str, status: str = "successful"
) -> Dict[str, Any]:
    return {
        "apiId": (request_info.apiId if request_info and request_info.apiId else default_api_id),
        "ver": "1.0",
        "ts": int(time.time() * 1000),
        "status": status,
    }


def _service(request: Request) -> CredentialService:
    return request.app.state.service


@router.get("/health", tags=["Health"])
async def health_check() -> Dict[str, str]:
    """Health check endpoint for monitoring and load balancers."""
    return {
        "status": "UP",
        "service": "vc-service",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }


@router.post("/v1/_issue", tags=["Credentials"])
@limiter.limit("60/minute")
def issue_credential(request: Request, body: IssueBody) -> Dict[str, Any]:
    """Issue a signed permit credential."""
    issued = _service(request).issue(
        body.credential_request.credentialSubject,
        holder=body.credential_request.holderDid,
        types=body.credential_request.type,
    )
    return {
        "ResponseInfo": response_info(body.request_info, "vc-issue"),
        "VerifiableCredential": issued.document,
    }


@router.post("/v1/_verify", tags=["Credentials"])
def verify_credential(request: Request, body: VerifyBody) -> Dict[str, Any]:
    """Verify a credential by id or as a full presented document."""
    verification = body.verification_request
    if (verification.vcId is None) == (verification.credential is None):
        raise ValidationError("Provide exactly one of vcId or credential")

    service = _service(request)
    if verification.credential is not None:
        result = service.verify_document(verification.credential)
    else:
        result = service.verify(verification.vcId)

    return {
        "ResponseInfo": response_info(body.request_info, "vc-verify"),
        "VerificationResult": {
            **result.to_dict(),
            "isValid": result.valid,
            "vcId": result.credential_id,
            "verifiedAt": format_timestamp(result.checked_at),
            "status": "VALID" if result.valid else result.reason.value,
            "verificationMethod": "cryptographic_proof",
        },
    }


@router.post("/v1/_revoke", tags=["Credentials"])
def revoke_credential(request: Request, body: RevokeBody) -> Dict[str, Any]:
    """Revoke a credential; repeating the call is harmless."""
    record = _service(request).revoke(body.revocation_request.vcId, body.revocation_request.reason)
    return {
        "ResponseInfo": response_info(body.request_info, "vc-revoke"),
        "Revocation": {
            "vcId": record.id,
            "status": record.status.value,
            "reason": record.revocation_reason,
            "revokedAt": format_timestamp(record.revoked_at) if record.revoked_at else None,
        },
    }


@router.post("/v1/_generateQR", tags=["Presentation"])
def generate_qr(request: Request, body: QRBody) -> Dict[str, Any]:
    """Generate a QR presentation code for a credential."""
    code = _service(request).generate_presentation_code(body.qr_request.vcId)
    return {
        "ResponseInfo": response_info(body.request_info, "vc-qr-generate"),
        "QRCode": {
            "qrCodeData": code.payload,
            "qrCodeImage": code.image,
            "expiryTime": int(code.expires_at.timestamp() * 1000),
            "expiresAt": format_timestamp(code.expires_at),
        },
    }


@router.post("/v1/_resolve", tags=["Presentation"])
def resolve_scan(request: Request, body: ScanBody) -> Dict[str, Any]:
    """Resolve a scanned QR payload into a live verification."""
    resolution = _service(request).resolve_scanned_code(body.scan_request.payload)
    return {
        "ResponseInfo": response_info(body.request_info, "vc-resolve"),
        "ScanResult": resolution.to_dict(),
    }


@router.get("/verify/{vc_id:path}", tags=["Presentation"])
@limiter.limit("200/minute")
def verify_scanned(request: Request, vc_id: str) -> Dict[str, Any]:
    """Target of the QR verification URL; always re-verifies the credential."""
    service = _service(request)
    payload = f"{service.channel.base_url}/{quote(vc_id, safe='')}"
    if request.url.query:
        payload += f"?{request.url.query}"
    return service.resolve_scanned_code(payload).to_dict()


async def permit_vc_error_handler(request: Request, exc: PermitVCError) -> JSONResponse:
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status_code >= 500:
        logger.error("Request %s failed: %s", request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={
            "ResponseInfo": response_info(None, "permit-vc", status="error"),
            "Errors": [
                {"code": type(exc).__name__, "message": exc.message, "details": exc.details}
            ],
        },
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as 400, like the domain validation errors."""
    return JSONResponse(
        status_code=400,
        content={
            "ResponseInfo": response_info(None, "permit-vc", status="error"),
            "Errors": [
                {
                    "code": "ValidationError",
                    "message": "Malformed request body",
                    "details": {"errors": jsonable_encoder(exc.errors())},
                }
            ],
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[CredentialService] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Permit VC API",
        description="Issue, verify and present verifiable credentials for approved permits",
        version=__version__,
        docs_url="/vc/docs",
        redoc_url="/vc/redoc",
    )
    app.state.settings = settings
    app.state.service = service or CredentialService.from_settings(settings)

    # Add rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(PermitVCError, permit_vc_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Security headers middleware
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=list(settings.trusted_hosts))

    app.include_router(router)
    return app
