"""
verifier_backend/nullifiers.py

Pulls nullifier data out of a verified authorization response.

Only the V3 circuit family exposes nullifiers. Its public signals are decimal
strings; the nullifier is output #4 and the nullifier session id is the last
public input. Responses from any other family yield no artifacts.
"""

from typing import List, Sequence

from .errors import PubSignalsError
from .storage import NullifierArtifact
from .validation import parse_big_int
from .verification import ProofResponse

V3_CIRCUIT_PREFIX = "credentialAtomicQueryV3"

NULLIFIER_INDEX = 4
# userID, circuitQueryHash, issuerState, linkID, nullifier, ..., nullifierSessionID
MIN_V3_SIGNALS = NULLIFIER_INDEX + 2


def is_v3_circuit(circuit_id: str) -> bool:
    return circuit_id.startswith(V3_CIRCUIT_PREFIX)


def _decimal(signal: str, name: str, scope_id: int) -> str:
    try:
        return str(parse_big_int(signal))
    except ValueError:
        raise PubSignalsError(f"scope {scope_id}: {name} is not a decimal integer")


def decode_v3(scope: ProofResponse) -> NullifierArtifact:
    signals = scope.pub_signals
    if len(signals) < MIN_V3_SIGNALS:
        raise PubSignalsError(
            f"scope {scope.id}: expected at least {MIN_V3_SIGNALS} public signals, got {len(signals)}"
        )

    return NullifierArtifact(
        scope_id=scope.id,
        nullifier_session_id=_decimal(signals[-1], "nullifierSessionID", scope.id),
        nullifier=_decimal(signals[NULLIFIER_INDEX], "nullifier", scope.id),
    )


def extract_nullifiers(scopes: Sequence[ProofResponse]) -> List[NullifierArtifact]:
    if not scopes:
        raise PubSignalsError("scopes are empty")

    # mixed or non-V3 responses carry no nullifiers; do not try to decode them
    if not all(is_v3_circuit(s.circuit_id) for s in scopes):
        return []

    return [decode_v3(s) for s in scopes]
