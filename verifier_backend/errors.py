"""
verifier_backend/errors.py

Error taxonomy for the gateway. Each error carries the HTTP status the API
answers with; main.py renders every one of them as {"message": str(err)}.
"""


class GatewayError(Exception):
    status_code = 500


class InvalidRequestError(GatewayError):
    """Caller input rejected before any state was touched."""

    status_code = 400


class SenderNotFoundError(InvalidRequestError):
    def __init__(self, chain_id: str):
        super().__init__(f"sender not found for chain {chain_id}")
        self.chain_id = chain_id


class SessionNotFoundError(GatewayError):
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__("sessionID not found")
        self.session_id = session_id


class QRCodeNotFoundError(GatewayError):
    # an id we issued ourselves should exist until TTL expiry
    status_code = 500

    def __init__(self, qr_id: str):
        super().__init__(f"Error getting QRCode: qr code {qr_id} not found")
        self.qr_id = qr_id


class SessionStateError(GatewayError):
    """Callback on a session that is not waiting for an authorization response."""


class VerificationFailedError(GatewayError):
    """The external verifier rejected the proof."""


class PubSignalsError(GatewayError):
    """Verifier output could not be decoded."""
