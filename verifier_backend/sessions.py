# verifier_backend/sessions.py
#
# -----------------------------------------------------------------------------
# Session lifecycle
# -----------------------------------------------------------------------------
#   initiate  : validate -> build request -> store Pending + QR payload
#   callback  : Pending -> verify (external) -> Verified | Failed
#   status    : read-only view for browser polling
#
#   Created --> Pending --> Verified
#                       \-> Failed
#
# Verified and Failed are terminal. A second callback on a terminal session is
# rejected and never overwrites the recorded outcome.
#
# The controller owns every session transition. The stores are shared between
# the worker threads serving requests; each write is a single keyed set, so a
# session never needs a lock spanning both stores.
# -----------------------------------------------------------------------------
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from .audit import AuditLog
from .builder import AUTHORIZATION_REQUEST_MESSAGE_TYPE, RequestBuilder
from .config import Settings
from .errors import (
    GatewayError,
    SessionNotFoundError,
    SessionStateError,
    VerificationFailedError,
)
from .identity import IdentityRegistry
from .models import JWZMetadata, NullifierProof, RequestMessage, SignInRequest, StatusResponse
from .nullifiers import extract_nullifiers
from .qr import request_uri
from .storage import (
    FailedSession,
    PendingSession,
    QRCodeStore,
    SessionStatus,
    SessionStore,
    TTLCache,
    VerifiedSession,
)
from .validation import request_mode, validate_request
from .verification import STATE_TRANSITION_DELAY, ProofVerifier

log = logging.getLogger("verifier_backend.sessions")


@dataclass(frozen=True)
class SignInResult:
    qr_code: str
    session_id: str


class SessionController:
    def __init__(
        self,
        settings: Settings,
        verifier: ProofVerifier,
        *,
        cache: Optional[TTLCache] = None,
        identities: Optional[IdentityRegistry] = None,
        audit: Optional[AuditLog] = None,
    ):
        self.settings = settings
        self.verifier = verifier
        self.audit = audit

        # TTLCache defines __len__, so an empty one is falsy
        self.cache = cache if cache is not None else TTLCache(settings.CACHE_EXPIRATION_SECONDS)
        self.sessions = SessionStore(self.cache)
        self.qr_store = QRCodeStore(self.cache, ttl=settings.QR_STORE_TTL_SECONDS)

        self.identities = identities if identities is not None else IdentityRegistry.from_settings(settings)
        self.builder = RequestBuilder(settings.HOST, settings.CALLBACK_PATH, self.identities)

    def _audit(self, result: str, **kwargs) -> None:
        if self.audit is not None:
            self.audit.record(result, **kwargs)

    def qr_uri(self, qr_id: str) -> str:
        # raises QRCodeNotFoundError for unknown / expired ids
        self.qr_store.get(qr_id)
        return request_uri(self.settings.QR_SCHEME, self.settings.HOST, self.settings.QR_STORE_PATH, qr_id)

    # -------------------------------------------------------------------------
    # Sign-in
    # -------------------------------------------------------------------------
    def initiate(self, req: SignInRequest) -> SignInResult:
        mode = request_mode(req)
        validate_request(
            req,
            mode,
            supported_chain_ids=self.settings.SUPPORTED_CHAIN_IDS,
            require_credential_subject=self.settings.STRICT_CREDENTIAL_SUBJECT,
        )

        session_id = str(uuid.uuid4())
        message = self.builder.build(req, mode, session_id)

        self.sessions.create(session_id, PendingSession(request=message))
        qr_id = self.qr_store.save(message)

        log.info(
            "session_issued",
            extra={
                "event_name": "session_issued",
                "session_id": session_id,
                "qr_id": qr_id,
                "mode": mode.value,
                "circuit_id": req.scope[0].circuit_id,
            },
        )
        self._audit("issued", session_id=session_id, mode=mode.value, qr_id=qr_id, message_id=message.id)

        return SignInResult(
            qr_code=request_uri(self.settings.QR_SCHEME, self.settings.HOST, self.settings.QR_STORE_PATH, qr_id),
            session_id=session_id,
        )

    def fetch_payload(self, qr_id: str) -> RequestMessage:
        return self.qr_store.get(qr_id)

    # -------------------------------------------------------------------------
    # Wallet callback
    # -------------------------------------------------------------------------
    def _pending_authorization(self, session_id: str) -> RequestMessage:
        value = self.sessions.get(session_id)
        if value is None:
            raise SessionNotFoundError(session_id)

        if not isinstance(value, PendingSession):
            raise SessionStateError(f"session {session_id} is already {value.status.value}")

        if value.request.type != AUTHORIZATION_REQUEST_MESSAGE_TYPE:
            raise SessionStateError(f"session {session_id} is not waiting for an authorization response")

        return value.request

    def callback(
        self,
        session_id: str,
        token: str,
        *,
        request_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> VerifiedSession:
        session_id = str(session_id)
        log.info("callback", extra={"event_name": "callback", "session_id": session_id})

        try:
            request = self._pending_authorization(session_id)
        except GatewayError as e:
            log.error(
                "callback_rejected",
                extra={"event_name": "callback_rejected", "session_id": session_id, "reason": str(e)},
            )
            self._audit("rejected", session_id=session_id, reason=str(e), token=token, request_ip=request_ip)
            raise

        try:
            response = self.verifier.verify(
                token,
                request,
                accepted_state_transition_delay=STATE_TRANSITION_DELAY,
            )
        except VerificationFailedError as e:
            self.sessions.create(session_id, FailedSession(cause=str(e)))
            log.error(
                "verification_failed",
                extra={"event_name": "verification_failed", "session_id": session_id, "reason": str(e)},
            )
            self._audit(
                "failed",
                session_id=session_id,
                reason=str(e),
                token=token,
                request_ip=request_ip,
                user_agent=user_agent,
            )
            raise

        # a decoding error leaves the session pending
        artifacts = extract_nullifiers(response.scopes)

        verified = VerifiedSession(jwz=token, user_did=response.from_did, scopes=artifacts)
        self.sessions.create(session_id, verified)

        log.info("verification_succeeded", extra={"event_name": "verification_succeeded", "session_id": session_id})
        self._audit(
            "verified",
            session_id=session_id,
            token=token,
            request_ip=request_ip,
            user_agent=user_agent,
            user_did=response.from_did,
            nullifiers=len(artifacts),
        )
        return verified

    # -------------------------------------------------------------------------
    # Browser polling
    # -------------------------------------------------------------------------
    def status(self, session_id: str) -> StatusResponse:
        session_id = str(session_id)
        value = self.sessions.get(session_id)
        if value is None:
            log.error("session_not_found", extra={"event_name": "session_not_found", "session_id": session_id})
            raise SessionNotFoundError(session_id)

        if isinstance(value, FailedSession):
            return StatusResponse(status=SessionStatus.ERROR.value, message=value.cause)

        if isinstance(value, VerifiedSession):
            nullifiers = [
                NullifierProof(
                    scope_id=a.scope_id,
                    nullifier_session_id=a.nullifier_session_id,
                    nullifier=a.nullifier,
                )
                for a in value.scopes
            ]
            metadata = JWZMetadata(user_did=value.user_did, nullifiers=nullifiers or None)
            return StatusResponse(status=SessionStatus.SUCCESS.value, jwz=value.jwz, jwz_metadata=metadata)

        return StatusResponse(status=SessionStatus.PENDING.value)
