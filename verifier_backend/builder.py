"""
verifier_backend/builder.py

Turns a validated sign-in request into the message handed to the wallet.

Two shapes:
  - authorization request (off-chain): the wallet answers on our callback URL
  - contract invoke request (on-chain): the wallet submits the proof to a
    verifier contract; the body carries transaction data instead of a callback

Both use a fresh message id that doubles as the thread id.
"""

import uuid
from typing import List

from .identity import IdentityRegistry
from .models import (
    ProofRequestScope,
    RequestBody,
    RequestMessage,
    SignInRequest,
    TransactionData,
)
from .validation import RequestMode, normalize_params

MEDIA_TYPE_PLAIN_MESSAGE = "application/iden3comm-plain-json"
AUTHORIZATION_REQUEST_MESSAGE_TYPE = "https://iden3-communication.io/authorization/1.0/request"
CONTRACT_INVOKE_REQUEST_MESSAGE_TYPE = "https://iden3-communication.io/proofs/1.0/contract-invoke-request"

DEFAULT_REASON = "for testing purposes"


def _new_message_id() -> str:
    return str(uuid.uuid4())


def _scopes(req: SignInRequest) -> List[ProofRequestScope]:
    out = []
    for scope in req.scope:
        out.append(
            ProofRequestScope(
                id=scope.id,
                circuit_id=scope.circuit_id,
                query=scope.query,
                params=normalize_params(scope.params) if scope.params is not None else None,
            )
        )
    return out


class RequestBuilder:
    def __init__(self, host: str, callback_path: str, identities: IdentityRegistry):
        self.host = host.rstrip("/")
        self.callback_path = callback_path
        self.identities = identities

    def callback_url(self, session_id: str) -> str:
        return f"{self.host}{self.callback_path}?sessionID={session_id}"

    def authorization_request(self, req: SignInRequest, session_id: str) -> RequestMessage:
        msg_id = _new_message_id()
        return RequestMessage(
            id=msg_id,
            thid=msg_id,
            typ=MEDIA_TYPE_PLAIN_MESSAGE,
            type=AUTHORIZATION_REQUEST_MESSAGE_TYPE,
            from_=self.identities.sender_did(req.chain_id),
            to=req.to or None,
            body=RequestBody(
                callback_url=self.callback_url(session_id),
                reason=req.reason if req.reason is not None else DEFAULT_REASON,
                scope=_scopes(req),
            ),
        )

    def contract_invoke_request(self, req: SignInRequest) -> RequestMessage:
        tx = req.transaction_data
        msg_id = _new_message_id()
        return RequestMessage(
            id=msg_id,
            thid=msg_id,
            typ=MEDIA_TYPE_PLAIN_MESSAGE,
            type=CONTRACT_INVOKE_REQUEST_MESSAGE_TYPE,
            from_=self.identities.sender_did(tx.chain_id),
            to=self.identities.contract_did(tx.contract_address, tx.chain_id),
            body=RequestBody(
                reason=req.reason if req.reason is not None else DEFAULT_REASON,
                scope=_scopes(req),
                transaction_data=TransactionData(
                    contract_address=tx.contract_address,
                    method_id=tx.method_id,
                    chain_id=tx.chain_id,
                    network=tx.network,
                ),
            ),
        )

    def build(self, req: SignInRequest, mode: RequestMode, session_id: str) -> RequestMessage:
        if mode is RequestMode.ON_CHAIN:
            return self.contract_invoke_request(req)
        return self.authorization_request(req, session_id)
