# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Certificate signature verification.

Two layers:

* :func:`verify_envelope` checks a detached signature against the public
  key of a document signer certificate.  EC keys are verified as ES256
  (raw ``r || s`` signature, ECDSA with SHA-256), RSA keys as PS256
  (RSA-PSS with SHA-256) and Ed25519 keys with pysodium.  It raises on
  any malformed input or mismatch.
* :func:`verify_certificate_signature` is the facade used by the
  validator.  It resolves the signer certificate from the certificate's
  ``kid`` and turns every failure into ``False``; the outcome is
  independent of the rule-based validity decision.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Collection, Mapping, Union

import pysodium
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from app.greenpass.issuer import load_certificate

if TYPE_CHECKING:
    from app.greenpass.models import Certificate, SignedEnvelope

logger = logging.getLogger("greenpass.signature")

__all__ = ["verify_certificate_signature", "verify_envelope"]


def _raw_to_der(signature: bytes) -> bytes:
    """Convert a raw ``r || s`` ECDSA signature to DER."""
    if len(signature) == 0 or len(signature) % 2:
        raise ValueError(f"Invalid ECDSA signature length: {len(signature)}")
    half = len(signature) // 2
    r = int.from_bytes(signature[:half], "big")
    s = int.from_bytes(signature[half:], "big")
    return encode_dss_signature(r, s)


def verify_envelope(envelope: "SignedEnvelope", issuer_cert: Union[bytes, str]) -> bool:
    """Verify a detached signature over the envelope payload.

    The algorithm follows the signer key: ES256 for EC keys, PS256 for
    RSA keys and plain Ed25519 for Ed25519 keys.

    Raises:
        ValueError: If the signer certificate cannot be parsed, carries an
            unsupported key type, or the signature does not match.
    """
    cert = load_certificate(issuer_cert)
    public_key = cert.public_key()
    signature = envelope.signature_bytes()
    payload = envelope.payload_bytes()

    try:
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(_raw_to_der(signature), payload, ec.ECDSA(hashes.SHA256()))
        elif isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(
                signature,
                payload,
                padding.PSS(
                    mgf=padding.MGF1(hashes.SHA256()),
                    salt_length=padding.PSS.DIGEST_LENGTH,
                ),
                hashes.SHA256(),
            )
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            verkey = public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
            # Raises ValueError when the signature does not match.
            pysodium.crypto_sign_verify_detached(signature, payload, verkey)
        else:
            raise ValueError(f"Unsupported signer key type: {type(public_key).__name__}")
    except InvalidSignature as exc:
        raise ValueError("Signature does not match the signer key") from exc
    return True


def verify_certificate_signature(
    certificate: "Certificate",
    signatures: Mapping[str, Union[bytes, str]],
    signature_list: Collection[str],
) -> bool:
    """Check the certificate signature against the signer named by ``kid``.

    Args:
        certificate: Decoded certificate carrying ``kid`` and ``envelope``.
        signatures: Signer certificates keyed by kid.
        signature_list: Kids currently trusted.

    Returns:
        ``True`` only when the kid is trusted and the envelope verifies.
    """
    kid = certificate.kid
    if not kid or kid not in signature_list:
        logger.debug("Signer kid=%s is not in the trust list", kid)
        return False
    if certificate.envelope is None:
        logger.debug("Certificate kid=%s carries no signed envelope", kid)
        return False
    issuer_cert = signatures.get(kid)
    if not issuer_cert:
        logger.debug("No signer certificate stored for kid=%s", kid)
        return False

    try:
        verified = certificate.envelope.verify_signature(issuer_cert)
    except Exception as exc:
        logger.debug("Signature verification failed for kid=%s: %s", kid, exc)
        return False
    return bool(verified)
