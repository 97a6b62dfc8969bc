from datetime import timedelta

import pytest

from verifier_backend.audit import AuditLog
from verifier_backend.errors import (
    InvalidRequestError,
    PubSignalsError,
    QRCodeNotFoundError,
    SessionNotFoundError,
    SessionStateError,
    VerificationFailedError,
)
from verifier_backend.models import SignInRequest
from verifier_backend.sessions import SessionController
from verifier_backend.storage import PendingSession, TTLCache
from verifier_backend.verification import AuthorizationResponse, ProofResponse

from tests.factories import FakeClock, FakeVerifier, USER_DID, kyc_query, off_chain_body, on_chain_body, v3_signals

TOKEN = "eyJhbGciOiJncm90aDE2In0.payload.proof"


def _sign_in(controller: SessionController, body: dict = None):
    return controller.initiate(SignInRequest.model_validate(body or off_chain_body()))


def _qr_id(qr_code: str) -> str:
    return qr_code.rsplit("id=", 1)[1]


def test_initiate_creates_pending_session(controller: SessionController) -> None:
    result = _sign_in(controller)

    assert result.qr_code == f"iden3comm://?request_uri=http://localhost/qr-store?id={_qr_id(result.qr_code)}"
    assert controller.status(result.session_id).to_json() == {"status": "pending"}

    message = controller.fetch_payload(_qr_id(result.qr_code))
    assert message.body.callback_url == f"http://localhost/callback?sessionID={result.session_id}"
    assert isinstance(controller.sessions.get(result.session_id), PendingSession)


def _query_without(field: str) -> dict:
    query = kyc_query()
    del query[field]
    return query


_SCOPE = {"id": 1, "circuitId": "credentialAtomicQuerySigV2", "query": kyc_query()}


@pytest.mark.parametrize(
    "body, message",
    [
        (off_chain_body(scope=[_SCOPE, dict(_SCOPE)]), "field scope id must be unique, got 1 multiple times"),
        (off_chain_body(scope=[dict(_SCOPE, query=_query_without("context"))]), "context cannot be empty"),
        (off_chain_body(scope=[dict(_SCOPE, query=_query_without("type"))]), "type cannot be empty"),
        (
            off_chain_body(scope=[dict(_SCOPE, query=_query_without("allowedIssuers"))]),
            "allowedIssuers cannot be empty",
        ),
        (off_chain_body(chainId="1"), "field chainId value is wrong, got 1, expected 80001 or 137"),
    ],
    ids=["duplicate-scope-id", "no-context", "no-type", "no-allowed-issuers", "unsupported-chain"],
)
def test_initiate_rejects_invalid_request_without_storing(
    controller: SessionController, body: dict, message: str
) -> None:
    with pytest.raises(InvalidRequestError) as exc:
        _sign_in(controller, body)
    assert str(exc.value) == message
    assert len(controller.cache) == 0


def test_every_sign_in_gets_its_own_session(controller: SessionController) -> None:
    first = _sign_in(controller)
    second = _sign_in(controller)
    assert first.session_id != second.session_id
    assert first.qr_code != second.qr_code


def test_unknown_session(controller: SessionController) -> None:
    with pytest.raises(SessionNotFoundError) as exc:
        controller.status("0b6cbd7b-95b3-4bc2-8e41-2fd7b3b6b7f2")
    assert str(exc.value) == "sessionID not found"

    with pytest.raises(SessionNotFoundError):
        controller.callback("0b6cbd7b-95b3-4bc2-8e41-2fd7b3b6b7f2", TOKEN)


def test_successful_callback(controller: SessionController, verifier: FakeVerifier) -> None:
    result = _sign_in(controller)
    controller.callback(result.session_id, TOKEN)

    assert controller.status(result.session_id).to_json() == {
        "status": "success",
        "jwz": TOKEN,
        "jwzMetadata": {"userDID": USER_DID},
    }

    token, request, delay = verifier.calls[0]
    assert token == TOKEN
    assert request.body.callback_url.endswith(result.session_id)
    assert delay == timedelta(minutes=5)


def test_successful_v3_callback_reports_nullifiers(settings, cache) -> None:
    verifier = FakeVerifier(
        AuthorizationResponse(
            from_did=USER_DID,
            scopes=[
                ProofResponse(
                    id=1,
                    circuit_id="credentialAtomicQueryV3-beta.0",
                    pub_signals=v3_signals("19740384729", "8927198273981273"),
                )
            ],
        )
    )
    controller = SessionController(settings, verifier, cache=cache)
    body = off_chain_body(
        scope=[
            {
                "id": 1,
                "circuitId": "credentialAtomicQueryV3-beta.0",
                "query": kyc_query(),
                "params": {"nullifierSessionID": "8927198273981273"},
            }
        ]
    )
    result = _sign_in(controller, body)
    controller.callback(result.session_id, TOKEN)

    assert controller.status(result.session_id).to_json()["jwzMetadata"] == {
        "userDID": USER_DID,
        "nullifiers": [
            {"scopeID": 1, "nullifierSessionID": "8927198273981273", "nullifier": "19740384729"},
        ],
    }


def test_failed_verification_becomes_error_status(settings, cache) -> None:
    controller = SessionController(settings, FakeVerifier(error="proof is not valid"), cache=cache)
    result = _sign_in(controller)

    with pytest.raises(VerificationFailedError):
        controller.callback(result.session_id, TOKEN)

    assert controller.status(result.session_id).to_json() == {"status": "error", "message": "proof is not valid"}


def test_second_callback_does_not_overwrite_outcome(controller: SessionController, verifier: FakeVerifier) -> None:
    result = _sign_in(controller)
    controller.callback(result.session_id, TOKEN)

    with pytest.raises(SessionStateError) as exc:
        controller.callback(result.session_id, "another-token")
    assert str(exc.value) == f"session {result.session_id} is already success"

    assert controller.status(result.session_id).jwz == TOKEN
    assert len(verifier.calls) == 1


def test_undecodable_signals_leave_session_pending(settings, cache) -> None:
    verifier = FakeVerifier(
        AuthorizationResponse(
            from_did=USER_DID,
            scopes=[ProofResponse(id=1, circuit_id="credentialAtomicQueryV3-beta.0", pub_signals=["1"])],
        )
    )
    controller = SessionController(settings, verifier, cache=cache)
    result = _sign_in(controller)

    with pytest.raises(PubSignalsError):
        controller.callback(result.session_id, TOKEN)
    assert controller.status(result.session_id).status == "pending"


def test_on_chain_session_does_not_accept_callbacks(controller: SessionController, verifier: FakeVerifier) -> None:
    result = _sign_in(controller, on_chain_body())

    message = controller.fetch_payload(_qr_id(result.qr_code))
    assert message.body.transaction_data.contract_address == "0x134B1BE34911E39A8397ec6289782989729807a4"

    with pytest.raises(SessionStateError):
        controller.callback(result.session_id, TOKEN)
    assert verifier.calls == []


def test_sessions_and_payloads_expire(settings, verifier) -> None:
    clock = FakeClock()
    controller = SessionController(settings, verifier, cache=TTLCache(settings.CACHE_EXPIRATION_SECONDS, clock=clock))
    result = _sign_in(controller)

    clock.advance(settings.CACHE_EXPIRATION_SECONDS)
    with pytest.raises(SessionNotFoundError):
        controller.status(result.session_id)
    with pytest.raises(QRCodeNotFoundError):
        controller.fetch_payload(_qr_id(result.qr_code))


def test_transitions_are_audited(settings, cache, tmp_path) -> None:
    audit = AuditLog(tmp_path)
    controller = SessionController(settings, FakeVerifier(), cache=cache, audit=audit)

    result = _sign_in(controller)
    controller.callback(result.session_id, TOKEN, request_ip="10.0.0.1", user_agent="wallet/1.0")
    with pytest.raises(SessionStateError):
        controller.callback(result.session_id, TOKEN)

    lines = audit.log_path.read_text(encoding="utf-8").splitlines()
    assert [line.count('"result":"') for line in lines] == [1, 1, 1]
    assert '"result":"issued"' in lines[0]
    assert '"result":"verified"' in lines[1]
    assert '"result":"rejected"' in lines[2]
    assert TOKEN not in audit.log_path.read_text(encoding="utf-8")
    assert audit.verify_chain()
