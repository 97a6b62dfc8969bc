"""
verifier_backend/verification.py

Boundary to the external proof verifier.

The gateway never checks zero-knowledge proofs itself. It hands the wallet's
token plus the request we issued to a ProofVerifier and gets back either the
decoded authorization response or a VerificationFailedError.

HTTPProofVerifier talks to a verifier service over HTTP:

  POST <VERIFIER_URL>
    {"token": "<jwz>", "request": {...issued message...},
     "acceptedStateTransitionDelay": <seconds>}

  200 -> {"from": "<did>", "scope": [{"id": 1, "circuitId": "...",
                                      "pub_signals": ["..."]}]}
  4xx/5xx -> {"message": "<why the proof was rejected>"}
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Protocol

import httpx

from .errors import PubSignalsError, VerificationFailedError
from .models import RequestMessage

# Proofs may reference an identity state that was superseded on-chain while
# the proof was in flight.
STATE_TRANSITION_DELAY = timedelta(minutes=5)


@dataclass(frozen=True)
class ProofResponse:
    id: int
    circuit_id: str
    pub_signals: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AuthorizationResponse:
    from_did: str
    scopes: List[ProofResponse] = field(default_factory=list)


class ProofVerifier(Protocol):
    def verify(
        self,
        token: str,
        request: RequestMessage,
        *,
        accepted_state_transition_delay: timedelta = STATE_TRANSITION_DELAY,
    ) -> AuthorizationResponse:
        ...


class UnconfiguredVerifier:
    def verify(self, token, request, *, accepted_state_transition_delay=STATE_TRANSITION_DELAY):
        raise VerificationFailedError("proof verifier is not configured")


def _parse_response(data) -> AuthorizationResponse:
    if not isinstance(data, dict) or not isinstance(data.get("from"), str):
        raise PubSignalsError("verifier response is missing 'from'")

    scopes = []
    for item in data.get("scope") or []:
        try:
            scopes.append(
                ProofResponse(
                    id=int(item["id"]),
                    circuit_id=str(item["circuitId"]),
                    pub_signals=[str(s) for s in item.get("pub_signals") or []],
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PubSignalsError(f"malformed verifier scope: {e!s}")

    return AuthorizationResponse(from_did=data["from"], scopes=scopes)


class HTTPProofVerifier:
    def __init__(self, url: str, timeout: float = 30.0, transport: Optional[httpx.BaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def _post(self, payload: dict) -> httpx.Response:
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            return client.post(self.url, json=payload)

    def verify(
        self,
        token: str,
        request: RequestMessage,
        *,
        accepted_state_transition_delay: timedelta = STATE_TRANSITION_DELAY,
    ) -> AuthorizationResponse:
        payload = {
            "token": token,
            "request": request.to_json(),
            "acceptedStateTransitionDelay": int(accepted_state_transition_delay.total_seconds()),
        }

        try:
            resp = self._post(payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise VerificationFailedError(f"verifier unavailable: {e!s}")

        if resp.status_code >= 400:
            message = None
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                message = body.get("message")
            raise VerificationFailedError(message or f"verifier rejected proof (HTTP {resp.status_code})")

        try:
            data = resp.json()
        except ValueError:
            raise PubSignalsError("verifier response is not JSON")

        return _parse_response(data)
