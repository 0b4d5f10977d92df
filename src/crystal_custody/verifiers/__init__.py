"""Signature verifier implementations."""

from crystal_custody.verifiers.signature import EthSignatureVerifier

__all__ = ["EthSignatureVerifier"]
