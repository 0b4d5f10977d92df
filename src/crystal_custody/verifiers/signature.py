"""Ethereum personal-message signer recovery.

Implements SignatureVerifier with EIP-191 ("\\x19Ethereum Signed Message")
recovery from eth-account. Principals that sign releases are therefore
0x-prefixed checksum addresses.
"""

from __future__ import annotations

from eth_account import Account
from eth_account.messages import encode_defunct

from crystal_custody.domain.exceptions import InvalidSignatureError
from crystal_custody.logging_config import get_logger

logger = get_logger(__name__)


class EthSignatureVerifier:
    """Recovers the checksum address that signed a text message."""

    def recover_signer(self, message: str, signature: str | bytes) -> str:
        if not signature:
            raise InvalidSignatureError("empty signature")
        try:
            signer = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as exc:
            logger.warning("verifier.signature.unrecoverable", error=str(exc))
            raise InvalidSignatureError(str(exc)) from exc

        logger.debug("verifier.signature.recovered", signer=signer)
        return signer
