"""
verifier_backend/identity.py

Identity lookups used while building requests.

- Sender DIDs: every issued request is signed "from" the verifier DID
  configured for the target chain.
- Contract DIDs: on-chain requests are addressed "to" the verifier contract.
  Its DID is a genesis identity derived from the contract address:

    genesis  = 7 zero bytes || 20-byte address            (27 bytes)
    typ      = method byte || network flag                 (2 bytes)
    checksum = sum(typ || genesis) as big-endian uint16    (2 bytes)
    id       = base58(typ || genesis || checksum)          (31 bytes)

  rendered as did:<method>:<blockchain>:<network>:<id>. The network flag,
  blockchain and network name come from the resolver settings entry whose
  chain id matches.
"""

import re
from typing import Dict, Optional, Tuple

import base58

from .config import ResolverNetworkSettings, ResolverSettings
from .errors import InvalidRequestError, SenderNotFoundError

DID_METHOD_BYTES = {
    "iden3": 0b0000_0001,
    "polygonid": 0b0000_0010,
}

_ETH_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")


def _checksum(data: bytes) -> bytes:
    s = sum(data) & 0xFFFF
    return s.to_bytes(2, "big")


def genesis_id_from_address(address: str, method_byte: int, network_flag: int) -> str:
    """base58 identity for an Ethereum address."""
    if not _ETH_ADDRESS_RE.fullmatch(address or ""):
        raise InvalidRequestError(f"field contractAddress is not a valid address, got {address}")

    genesis = bytes(7) + bytes.fromhex(address[2:])
    typ = bytes([method_byte, network_flag])
    raw = typ + genesis
    return base58.b58encode(raw + _checksum(raw)).decode("ascii")


class IdentityRegistry:
    def __init__(
        self,
        sender_dids: Dict[str, str],
        resolver_settings: Optional[ResolverSettings] = None,
        did_method: str = "polygonid",
    ):
        self.sender_dids = dict(sender_dids)
        self.resolver_settings = resolver_settings or {}
        self.did_method = did_method

    @classmethod
    def from_settings(cls, settings) -> "IdentityRegistry":
        return cls(
            sender_dids=settings.sender_dids,
            resolver_settings=settings.RESOLVER_SETTINGS,
            did_method=settings.DID_METHOD,
        )

    def sender_did(self, chain_id) -> str:
        did = self.sender_dids.get(str(chain_id))
        if not did:
            raise SenderNotFoundError(str(chain_id))
        return did

    def network_for_chain(self, chain_id) -> Tuple[str, str, ResolverNetworkSettings]:
        chain_id = str(chain_id)
        for blockchain, networks in self.resolver_settings.items():
            for network, attrs in networks.items():
                if attrs.chain_id == chain_id:
                    return blockchain, network, attrs
        raise InvalidRequestError(f"network not configured for chain {chain_id}")

    def contract_did(self, contract_address: str, chain_id) -> str:
        method_byte = DID_METHOD_BYTES.get(self.did_method)
        if method_byte is None:
            raise InvalidRequestError(f"unsupported DID method {self.did_method}")

        blockchain, network, attrs = self.network_for_chain(chain_id)
        id_ = genesis_id_from_address(contract_address, method_byte, attrs.network_flag)
        return f"did:{self.did_method}:{blockchain}:{network}:{id_}"
