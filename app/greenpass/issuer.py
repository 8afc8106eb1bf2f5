# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Issuer metadata from document signer certificates.

The recovery validator needs two facts about the key that signed a
certificate: the issuing country (``C`` in the X.509 issuer name) and,
for Italian issuers, the first extended key usage OID.  The latter marks
recovery certificates issued after a positive test during vaccination
("recovery-bis").

Trust lists deliver signer certificates either PEM-armored or as raw
DER, so both are accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from cryptography import x509
from cryptography.x509.oid import ExtensionOID, NameOID

logger = logging.getLogger("greenpass.issuer")

__all__ = ["IssuerInfo", "ITALY", "load_certificate", "read_issuer_info"]

ITALY = "IT"


@dataclass(frozen=True)
class IssuerInfo:
    country: Optional[str] = None
    oid: Optional[str] = None


def load_certificate(data: Union[bytes, str]) -> x509.Certificate:
    """Load a PEM or DER encoded X.509 certificate.

    Bare base64 (PEM body without armor, as served by some trust list
    endpoints) is wrapped before loading.

    Raises:
        ValueError: If the data is not a certificate.
    """
    if isinstance(data, str):
        data = data.encode("ascii")
    stripped = data.strip()
    if stripped.startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(stripped)
    if stripped[:1] == b"\x30":
        return x509.load_der_x509_certificate(stripped)
    body = b"".join(stripped.split())
    lines = b"\n".join(body[i:i + 64] for i in range(0, len(body), 64))
    armored = b"-----BEGIN CERTIFICATE-----\n" + lines + b"\n-----END CERTIFICATE-----\n"
    return x509.load_pem_x509_certificate(armored)


def read_issuer_info(cert_data: Union[bytes, str, None]) -> IssuerInfo:
    """Extract issuer country and extended key usage from a signer certificate.

    Never raises: an absent or unparseable certificate yields an empty
    ``IssuerInfo``.
    """
    if not cert_data:
        return IssuerInfo()
    try:
        cert = load_certificate(cert_data)
    except Exception as exc:
        logger.debug("Unable to parse signer certificate: %s", exc)
        return IssuerInfo()

    countries = cert.issuer.get_attributes_for_oid(NameOID.COUNTRY_NAME)
    country = countries[0].value if countries else None
    if country != ITALY:
        return IssuerInfo(country=country)

    try:
        usage = cert.extensions.get_extension_for_oid(ExtensionOID.EXTENDED_KEY_USAGE).value
    except x509.ExtensionNotFound:
        return IssuerInfo(country=country)
    except ValueError as exc:
        logger.debug("Malformed extended key usage in signer certificate: %s", exc)
        return IssuerInfo(country=country)

    oids = [oid.dotted_string for oid in usage]
    return IssuerInfo(country=country, oid=oids[0] if oids else None)
