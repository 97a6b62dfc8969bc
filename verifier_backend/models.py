from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# Sign-in input (what the browser asks us to prove)
# -----------------------------------------------------------------------------
# Fields default to "empty" instead of being required so the validator can
# report the first problem with its own message.
class ScopeRequest(_Model):
    id: int = 0
    circuit_id: str = Field("", alias="circuitId")
    query: Optional[Dict[str, Any]] = None
    params: Optional[Dict[str, Any]] = None


class TransactionDataRequest(_Model):
    contract_address: str = Field("", alias="contractAddress")
    method_id: str = Field("", alias="methodId")
    chain_id: int = Field(0, alias="chainId")
    network: str = ""


class SignInRequest(_Model):
    scope: List[ScopeRequest] = Field(default_factory=list)
    chain_id: Optional[str] = Field(None, alias="chainId")
    to: Optional[str] = None
    reason: Optional[str] = None
    transaction_data: Optional[TransactionDataRequest] = Field(None, alias="transactionData")

    @field_validator("chain_id", mode="before")
    @classmethod
    def chain_id_as_str(cls, v):
        # wallets send "80001" but some clients send 80001
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


# -----------------------------------------------------------------------------
# Issued request message (what the wallet fetches from the QR store)
# -----------------------------------------------------------------------------
class ProofRequestScope(_Model):
    id: int
    circuit_id: str = Field(alias="circuitId")
    query: Dict[str, Any]
    params: Optional[Dict[str, Any]] = None


class TransactionData(_Model):
    contract_address: str = Field(alias="contractAddress")
    method_id: str = Field(alias="methodId")
    chain_id: int = Field(alias="chainId")
    network: str


class RequestBody(_Model):
    callback_url: Optional[str] = Field(None, alias="callbackUrl")
    reason: str
    scope: List[ProofRequestScope] = Field(default_factory=list)
    transaction_data: Optional[TransactionData] = Field(None, alias="transactionData")


class RequestMessage(_Model):
    id: str
    thid: str
    typ: str
    type: str
    from_: str = Field(alias="from")
    to: Optional[str] = None
    body: RequestBody


# -----------------------------------------------------------------------------
# API responses
# -----------------------------------------------------------------------------
class SignInResponse(_Model):
    qr_code: str = Field(alias="qrCode")
    session_id: str = Field(alias="sessionID")


class NullifierProof(_Model):
    scope_id: int = Field(alias="scopeID")
    nullifier_session_id: Optional[str] = Field(None, alias="nullifierSessionID")
    nullifier: Optional[str] = None


class JWZMetadata(_Model):
    user_did: str = Field(alias="userDID")
    nullifiers: Optional[List[NullifierProof]] = None


class StatusResponse(_Model):
    status: str
    message: Optional[str] = None
    jwz: Optional[str] = None
    jwz_metadata: Optional[JWZMetadata] = Field(None, alias="jwzMetadata")


class ErrorResponse(_Model):
    message: str
