"""
verifier_backend/validation.py

Pure checks on an incoming sign-in request. Nothing here touches state: a
request that fails validation never creates a session.

Rules run in a fixed order and the first failure wins, so clients always get
the same message for the same input.
"""

import re
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Sequence

from .errors import InvalidRequestError
from .models import ScopeRequest, SignInRequest

OFF_CHAIN_CIRCUITS = (
    "credentialAtomicQuerySigV2",
    "credentialAtomicQueryMTPV2",
    "credentialAtomicQueryV3-beta.0",
)

ON_CHAIN_CIRCUITS = (
    "credentialAtomicQuerySigV2OnChain",
    "credentialAtomicQueryMTPV2OnChain",
    "credentialAtomicQueryV3OnChain-beta.0",
)

NULLIFIER_SESSION_ID_PARAM = "nullifierSessionID"
# key name the wallet expects on the issued request
NULLIFIER_SESSION_ID_FIELD = "nullifierSessionId"

# circuit signals are field elements (< 2^254, 77 digits); anything far longer
# is not a session id and would also trip int()'s digit limit
MAX_BIG_INT_DIGITS = 1000

_DECIMAL_RE = re.compile(r"[+-]?[0-9]+")


class RequestMode(str, Enum):
    OFF_CHAIN = "off-chain"
    ON_CHAIN = "on-chain"


def request_mode(req: SignInRequest) -> RequestMode:
    """
    The first scope decides the message shape. Anything that is not an
    on-chain circuit is validated as off-chain, which reports an unknown
    circuit together with the allowed set.
    """
    if req.scope and req.scope[0].circuit_id in ON_CHAIN_CIRCUITS:
        return RequestMode.ON_CHAIN
    return RequestMode.OFF_CHAIN


def _or_list(values: Iterable[str]) -> str:
    return " or ".join(values)


class BigIntTooLongError(ValueError):
    pass


def parse_big_int(value: Any) -> int:
    """
    Base-10 big integer from a JSON value. Rejects anything int() would
    otherwise be lenient about (whitespace, underscores, floats, bools).
    Strings longer than MAX_BIG_INT_DIGITS digits raise BigIntTooLongError.
    """
    if isinstance(value, bool):
        raise ValueError("not a decimal integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _DECIMAL_RE.fullmatch(value):
        if len(value.lstrip("+-")) > MAX_BIG_INT_DIGITS:
            raise BigIntTooLongError(f"more than {MAX_BIG_INT_DIGITS} digits")
        return int(value, 10)
    raise ValueError("not a decimal integer")


def normalize_params(params: Dict[str, Any]) -> Dict[str, str]:
    # a JSON null counts as absent
    if params.get(NULLIFIER_SESSION_ID_PARAM) is None:
        raise InvalidRequestError(f"{NULLIFIER_SESSION_ID_PARAM} is empty")

    try:
        nullifier_session_id = parse_big_int(params[NULLIFIER_SESSION_ID_PARAM])
    except BigIntTooLongError:
        raise InvalidRequestError(
            f"{NULLIFIER_SESSION_ID_PARAM} is too long, expected at most {MAX_BIG_INT_DIGITS} digits"
        )
    except ValueError:
        raise InvalidRequestError(f"{NULLIFIER_SESSION_ID_PARAM} is not a valid big integer")

    return {NULLIFIER_SESSION_ID_FIELD: str(nullifier_session_id)}


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def validate_query(query: Optional[Dict[str, Any]], require_credential_subject: bool) -> None:
    if query is None:
        raise InvalidRequestError("field query is empty")

    if _is_blank(query.get("context")):
        raise InvalidRequestError("context cannot be empty")

    if _is_blank(query.get("type")):
        raise InvalidRequestError("type cannot be empty")

    if query.get("allowedIssuers") is None:
        raise InvalidRequestError("allowedIssuers cannot be empty")

    if require_credential_subject and query.get("credentialSubject") is None:
        raise InvalidRequestError("credentialSubject cannot be empty")


def validate_scopes(
    scopes: Sequence[ScopeRequest],
    mode: RequestMode,
    require_credential_subject: bool = False,
) -> None:
    if not scopes:
        raise InvalidRequestError("field scope is empty")

    allowed = OFF_CHAIN_CIRCUITS if mode is RequestMode.OFF_CHAIN else ON_CHAIN_CIRCUITS

    seen = set()
    for scope in scopes:
        if scope.id in seen:
            raise InvalidRequestError(f"field scope id must be unique, got {scope.id} multiple times")
        seen.add(scope.id)

        if scope.id <= 0:
            raise InvalidRequestError("field scope id is empty")

        if not scope.circuit_id:
            raise InvalidRequestError("field circuitId is empty")

        if scope.circuit_id not in allowed:
            raise InvalidRequestError(
                f"field circuitId value is wrong, got {scope.circuit_id}, expected {_or_list(allowed)}"
            )

        validate_query(scope.query, require_credential_subject)


def validate_chain_id(chain_id: Optional[str], supported_chain_ids: Sequence[str]) -> None:
    if not chain_id:
        raise InvalidRequestError(f"field chainId is empty expected {_or_list(supported_chain_ids)}")

    if chain_id not in supported_chain_ids:
        raise InvalidRequestError(
            f"field chainId value is wrong, got {chain_id}, expected {_or_list(supported_chain_ids)}"
        )


def validate_transaction_data(req: SignInRequest) -> None:
    tx = req.transaction_data
    if tx is None:
        raise InvalidRequestError("field transactionData is empty")

    if tx.chain_id <= 0:
        raise InvalidRequestError("field chainId is empty")

    if not tx.contract_address:
        raise InvalidRequestError("field contractAddress is empty")

    if not tx.method_id:
        raise InvalidRequestError("field methodId is empty")

    if not tx.network:
        raise InvalidRequestError("field network is empty")


def validate_request(
    req: SignInRequest,
    mode: RequestMode,
    *,
    supported_chain_ids: Sequence[str],
    require_credential_subject: bool = False,
) -> None:
    """Raise InvalidRequestError describing the first problem found."""
    validate_scopes(req.scope, mode, require_credential_subject)

    if mode is RequestMode.OFF_CHAIN:
        validate_chain_id(req.chain_id, supported_chain_ids)
    else:
        validate_transaction_data(req)

    for scope in req.scope:
        if scope.params is not None:
            normalize_params(scope.params)
