# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Green pass data model: certificates, rules, modes and results."""

from __future__ import annotations

import base64
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, computed_field
from pydantic.alias_generators import to_camel


# =============================================================================
# Status codes and modes
# =============================================================================

class CertificateStatus(str, Enum):
    VALID = "VALID"
    NOT_VALID = "NOT_VALID"
    NOT_VALID_YET = "NOT_VALID_YET"
    REVOKED = "REVOKED"
    TEST_NEEDED = "TEST_NEEDED"
    NOT_EU_DCC = "NOT_EU_DCC"


class ValidationMode(str, Enum):
    NORMAL = "NORMAL"
    SUPER = "SUPER"
    BOOSTER = "BOOSTER"
    VISITOR = "VISITOR"
    WORK = "WORK"
    ENTRY = "ENTRY"

    @classmethod
    def _missing_(cls, value):
        # Wire names used by the national verification SDKs.
        if isinstance(value, str):
            name = MODE_ALIASES.get(value.upper(), value.upper())
            for member in cls:
                if member.value == name:
                    return member
        return None


MODE_ALIASES = {
    "3G": "NORMAL",
    "2G": "SUPER",
    "ENTRY_IT": "ENTRY",
}


class CertificateKind(str, Enum):
    VACCINATION = "vaccination"
    TEST = "test"
    RECOVERY = "recovery"
    EXEMPTION = "exemption"


# =============================================================================
# Rules
# =============================================================================

GENERIC_TYPE = "GENERIC"


class Rule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = GENERIC_TYPE
    value: Union[int, float, str]


# =============================================================================
# Certificate payload
# =============================================================================

class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Person(_Payload):
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    standardised_given_name: Optional[str] = None
    standardised_family_name: Optional[str] = None

    @property
    def full_name(self) -> str:
        """Holder name as ``given family``, skipping missing parts."""
        return " ".join(p for p in (self.given_name, self.family_name) if p)


class VaccinationEntry(_Payload):
    medicinal_product: Optional[str] = None
    dose_number: Optional[int] = None
    total_series_of_doses: Optional[int] = None
    country_of_vaccination: Optional[str] = None
    date_of_vaccination: Optional[str] = None
    certificate_identifier: Optional[str] = None


class TestEntry(_Payload):
    type_of_test: Optional[str] = None
    test_result: Optional[str] = None
    date_time_of_collection: Optional[str] = None
    certificate_identifier: Optional[str] = None


class RecoveryEntry(_Payload):
    certificate_valid_from: Optional[str] = None
    certificate_valid_until: Optional[str] = None
    country: Optional[str] = None
    certificate_identifier: Optional[str] = None


class ExemptionEntry(_Payload):
    certificate_valid_from: Optional[str] = None
    certificate_valid_until: Optional[str] = None
    country: Optional[str] = None
    certificate_identifier: Optional[str] = None


class SignedEnvelope(_Payload):
    """Detached-signature envelope attached to a decoded certificate.

    ``payload`` and ``signature`` are base64url strings (padding
    optional).  The signature covers the raw payload bytes and is
    checked against the issuer certificate key: ES256 for EC keys, PS256
    for RSA keys, plain Ed25519 for Ed25519 keys.
    """

    payload: str
    signature: str

    def payload_bytes(self) -> bytes:
        return _b64url_decode(self.payload)

    def signature_bytes(self) -> bytes:
        return _b64url_decode(self.signature)

    def verify_signature(self, issuer_cert: Union[bytes, str]) -> bool:
        from app.greenpass.signature import verify_envelope

        return verify_envelope(self, issuer_cert)


class Certificate(_Payload):
    """A decoded digital COVID certificate.

    Exactly one of the four entry sequences is expected to be populated;
    validation only ever looks at the last entry of that sequence.
    """

    person: Optional[Person] = None
    date_of_birth: Optional[str] = None
    kid: Optional[str] = None
    vaccinations: Optional[List[VaccinationEntry]] = None
    tests: Optional[List[TestEntry]] = None
    recovery_statements: Optional[List[RecoveryEntry]] = None
    exemptions: Optional[List[ExemptionEntry]] = None
    envelope: Optional[SignedEnvelope] = None

    @property
    def kind(self) -> Optional[CertificateKind]:
        if self.vaccinations is not None:
            return CertificateKind.VACCINATION
        if self.tests is not None:
            return CertificateKind.TEST
        if self.recovery_statements is not None:
            return CertificateKind.RECOVERY
        if self.exemptions is not None:
            return CertificateKind.EXEMPTION
        return None

    def entries(self) -> list:
        """Entries of the populated payload kind, oldest first."""
        kind = self.kind
        if kind is CertificateKind.VACCINATION:
            return list(self.vaccinations)
        if kind is CertificateKind.TEST:
            return list(self.tests)
        if kind is CertificateKind.RECOVERY:
            return list(self.recovery_statements)
        if kind is CertificateKind.EXEMPTION:
            return list(self.exemptions)
        return []


# =============================================================================
# Results
# =============================================================================

class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: CertificateStatus
    message: str

    @computed_field
    @property
    def result(self) -> bool:
        return self.code == CertificateStatus.VALID


class ValidationRequest(BaseModel):
    """Body of ``POST /validate``; a missing mode means the configured default."""

    certificate: Certificate
    mode: Optional[ValidationMode] = None


class ValidationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    person: Optional[str] = None
    date_of_birth: Optional[str] = None
    code: CertificateStatus
    message: str
    result: bool


class ErrorDetail(BaseModel):
    code: str
    message: str


def _b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded)
