"""Signature Verifier Protocol.

Defines the interface used by the signed-release operation family to learn
who signed a message. Only signer recovery is modelled; no quorum counting
or proof verification happens behind this seam.

The domain layer has ZERO imports from eth-account or any crypto library.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


def signed_release_message(crystal_id: int) -> str:
    """Canonical text an originator signs to authorize release of a crystal.

    Binding the id into the message stops a signature for one crystal from
    being replayed against another.
    """
    return f"finalize-transmission:{crystal_id}"


def same_identity(signer: str, principal: str) -> bool:
    """Compare a recovered signer with a stored principal.

    0x-prefixed hex addresses compare case-insensitively (EIP-55 checksum
    casing is ignored). Any other identity must match exactly.
    """
    if signer[:2].lower() == "0x" and principal[:2].lower() == "0x":
        return signer[2:].lower() == principal[2:].lower()
    return signer == principal


@runtime_checkable
class SignatureVerifier(Protocol):
    """Protocol that all signature verifiers must satisfy.

    Concrete implementations:
        - verifiers/signature.py (EIP-191 personal messages via eth-account)
    """

    def recover_signer(self, message: str, signature: str | bytes) -> str:
        """Return the identity that produced ``signature`` over ``message``.

        Raises:
            InvalidSignatureError: If no signer can be recovered.
        """
