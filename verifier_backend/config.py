from typing import Annotated, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ResolverNetworkSettings(BaseModel):
    """One blockchain network the verifier can resolve state on."""

    model_config = ConfigDict(populate_by_name=True)

    contract_address: str = Field("", alias="contractAddress")
    network_url: str = Field("", alias="networkURL")
    chain_id: str = Field("", alias="chainID")
    did: Optional[str] = None
    network_flag: int = Field(0, alias="networkFlag")

    @field_validator("chain_id", mode="before")
    @classmethod
    def chain_id_as_str(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


# blockchain -> network -> settings
ResolverSettings = Dict[str, Dict[str, ResolverNetworkSettings]]


DEFAULT_SENDER_DIDS = {
    "80001": "did:polygonid:polygon:mumbai:2qH7TstpRRJHXNN4o49Fu9H2Qismku8hQeUxDVrjqT",
    "137": "did:polygonid:polygon:main:2qH7TstpRRJHXNN4o49Fu9H2Qismku8hQeUxDVrjqT",
}

DEFAULT_RESOLVER_SETTINGS = {
    "polygon": {
        "mumbai": {
            "contractAddress": "0x134B1BE34911E39A8397ec6289782989729807a4",
            "networkURL": "https://rpc-mumbai.maticvigil.com",
            "chainID": "80001",
            "networkFlag": 0b0001_0010,
        },
        "main": {
            "contractAddress": "0x624ce98D2d27b20b8f8d521723Df8fC4db71D79D",
            "networkURL": "https://polygon-rpc.com",
            "chainID": "137",
            "networkFlag": 0b0001_0001,
        },
    },
}


class Settings(BaseSettings):
    # public base URL the wallet reaches us on (callback + QR indirection)
    HOST: str = "http://localhost:3010"

    # session entries live this long after their last write
    CACHE_EXPIRATION_SECONDS: int = 3600
    # QR payloads must outlive a scan + fetch
    QR_STORE_TTL_SECONDS: int = 3600

    CALLBACK_PATH: str = "/callback"
    QR_STORE_PATH: str = "/qr-store"
    QR_SCHEME: str = "iden3comm"

    SUPPORTED_CHAIN_IDS: Annotated[List[str], NoDecode] = ["80001", "137"]

    # chain id -> DID used as "from" on issued requests
    SENDER_DIDS: Dict[str, str] = dict(DEFAULT_SENDER_DIDS)
    RESOLVER_SETTINGS: ResolverSettings = Field(
        default_factory=lambda: {
            chain: {name: ResolverNetworkSettings(**attrs) for name, attrs in networks.items()}
            for chain, networks in DEFAULT_RESOLVER_SETTINGS.items()
        }
    )
    DID_METHOD: str = "polygonid"

    # require credentialSubject in every scope query
    STRICT_CREDENTIAL_SUBJECT: bool = False

    # external proof verifier service; unset -> every callback fails verification
    VERIFIER_URL: Optional[str] = None
    VERIFIER_TIMEOUT_SECONDS: float = 30.0

    AUDIT_ENABLED: bool = True
    AUDIT_DIR: str = "audit"

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="VERIFIER_BACKEND_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("HOST")
    @classmethod
    def normalize_host(cls, v: str) -> str:
        """
        HOST must be an absolute http(s) origin reachable by the wallet.

        Normalization:
          - strip whitespace and trailing slash
          - require http/https and a hostname
          - lowercase hostname, keep port and path prefix
        """
        v = (v or "").strip().rstrip("/")
        p = urlparse(v)

        if p.scheme not in ("http", "https"):
            raise ValueError("HOST must start with http:// or https://")

        if not p.hostname:
            raise ValueError("HOST must include a hostname")

        netloc = p.hostname.lower()
        if p.port:
            netloc = f"{netloc}:{p.port}"

        # a reverse proxy may mount us under a path prefix
        return urlunparse((p.scheme, netloc, p.path.rstrip("/"), "", "", ""))

    @field_validator("VERIFIER_URL")
    @classmethod
    def validate_verifier_url(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        if not v:
            return None
        p = urlparse(v)
        if p.scheme not in ("http", "https") or not p.hostname:
            raise ValueError("VERIFIER_URL must be an absolute http:// or https:// URL")
        return v

    @field_validator("CALLBACK_PATH", "QR_STORE_PATH")
    @classmethod
    def normalize_path(cls, v: str) -> str:
        v = (v or "").strip()
        if not v.startswith("/"):
            v = "/" + v
        return v

    @field_validator("SUPPORTED_CHAIN_IDS", mode="before")
    @classmethod
    def normalize_chain_ids(cls, v):
        # accept SUPPORTED_CHAIN_IDS="80001,137" from env
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return [str(p).strip() for p in v]

    @field_validator("CACHE_EXPIRATION_SECONDS", "QR_STORE_TTL_SECONDS")
    @classmethod
    def positive_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("TTL must be positive")
        return v

    @model_validator(mode="after")
    def supported_chains_have_senders(self):
        # fail fast: a supported chain without a sender would only surface on sign-in
        senders = self.sender_dids
        missing = [c for c in self.SUPPORTED_CHAIN_IDS if c not in senders]
        if missing:
            raise ValueError(f"no sender DID configured for chain(s): {', '.join(missing)}")
        return self

    @property
    def sender_dids(self) -> Dict[str, str]:
        """Explicit SENDER_DIDS win over DIDs declared in resolver settings."""
        out: Dict[str, str] = {}
        for networks in self.RESOLVER_SETTINGS.values():
            for attrs in networks.values():
                if attrs.did and attrs.chain_id:
                    out[attrs.chain_id] = attrs.did
        out.update(self.SENDER_DIDS)
        return out


settings = Settings()
