# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Shared test fixtures for the green pass validator test suite.

Provides a fixed clock, a complete national rule set, real Ed25519 signer
certificates (built with ``cryptography``), signed envelopes (signed with
pysodium when available), certificate factories and a loaded in-memory
trust store.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.x509.oid import NameOID, ObjectIdentifier

from app.greenpass.models import Certificate, Rule
from app.greenpass.store import InMemoryTrustStore

try:
    import pysodium
except ImportError:
    pysodium = None


# =========================================================================
# Constants
# =========================================================================

NOW = datetime(2022, 3, 15, 12, 0, 0, tzinfo=timezone.utc)

KID = "dGVzdGtpZDE="
PFIZER = "EU/1/20/1528"
JOHNSON = "EU/1/20/1525"
MODERNA = "EU/1/20/1507"
ASTRAZENECA = "EU/1/21/1529"
SPUTNIK = "Sputnik-V"

MOLECULAR = "LP6464-4"
RAPID = "LP217198-3"
NOT_DETECTED = "260415000"
DETECTED = "260373001"

RECOVERY_BIS_OID = "1.3.6.1.4.1.1847.2021.1.3"

BLACKLISTED_UVCI = "URN:UVCI:01:IT:BLACKLISTED#1"
REVOKED_UVCI = "URN:UVCI:01:IT:REVOKED#2"

_SEED = bytes(range(32))


def _rule(name: str, value, type: str = "GENERIC") -> Dict[str, object]:
    return {"name": name, "type": type, "value": value}


def build_rule_set() -> List[Dict[str, object]]:
    """The national rule set as served by the rules endpoint (string values)."""
    rules = []
    for product in (PFIZER, JOHNSON, MODERNA, ASTRAZENECA, "Covishield", "R-COVI",
                    "Covid-19-recombinant", SPUTNIK):
        rules.append(_rule("vaccine_start_day_not_complete", "15", product))
        rules.append(_rule("vaccine_end_day_not_complete", "42", product))
    rules += [
        _rule("vaccine_start_day_complete_IT", "0"),
        _rule("vaccine_end_day_complete_IT", "180"),
        _rule("vaccine_start_day_booster_IT", "0"),
        _rule("vaccine_end_day_booster_IT", "180"),
        _rule("vaccine_start_day_complete_NOT_IT", "0"),
        _rule("vaccine_end_day_complete_NOT_IT", "270"),
        _rule("vaccine_start_day_booster_NOT_IT", "0"),
        _rule("vaccine_end_day_booster_NOT_IT", "270"),
        _rule("vaccine_end_day_complete_extended_EMA", "30"),
        _rule("molecular_test_start_hours", "0"),
        _rule("molecular_test_end_hours", "72"),
        _rule("rapid_test_start_hours", "0"),
        _rule("rapid_test_end_hours", "48"),
        _rule("recovery_cert_start_day_IT", "0"),
        _rule("recovery_cert_end_day_IT", "180"),
        _rule("recovery_cert_start_day_NOT_IT", "0"),
        _rule("recovery_cert_end_day_NOT_IT", "270"),
        _rule("recovery_pv_cert_start_day", "0"),
        _rule("recovery_pv_cert_end_day", "270"),
        _rule("black_list_uvci", f"{BLACKLISTED_UVCI};URN:UVCI:01:IT:OTHER#3;", "black_list_uvci"),
    ]
    return rules


# =========================================================================
# Clock and rules
# =========================================================================

@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def rule_dicts() -> List[Dict[str, object]]:
    return build_rule_set()


@pytest.fixture
def rules(rule_dicts) -> List[Rule]:
    return [Rule.model_validate(r) for r in rule_dicts]


# =========================================================================
# Ed25519 signer material
# =========================================================================

@pytest.fixture
def ed25519_keypair() -> Tuple[bytes, bytes]:
    """Deterministic Ed25519 keypair (public_key, secret_key).

    Skips:
        If pysodium is not installed.
    """
    if pysodium is None:
        pytest.skip("pysodium not available")
    pk, sk = pysodium.crypto_sign_seed_keypair(_SEED)
    return pk, sk


def build_signer_cert(
    seed: bytes = _SEED,
    country: str = "IT",
    eku_oid: Optional[str] = None,
) -> bytes:
    """Self-signed Ed25519 document signer certificate, PEM encoded."""
    private_key = ed25519.Ed25519PrivateKey.from_private_bytes(seed)
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, country),
        x509.NameAttribute(NameOID.COMMON_NAME, f"DSC {country} test"),
    ])
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(1000)
        .not_valid_before(datetime(2021, 1, 1, tzinfo=timezone.utc))
        .not_valid_after(datetime(2031, 1, 1, tzinfo=timezone.utc))
    )
    if eku_oid:
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([ObjectIdentifier(eku_oid)]), critical=False,
        )
    cert = builder.sign(private_key, None)
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def make_signer_cert() -> Callable[..., bytes]:
    """Factory fixture: build a PEM signer certificate."""
    return build_signer_cert


@pytest.fixture
def signer_cert() -> bytes:
    return build_signer_cert()


@pytest.fixture
def make_envelope(ed25519_keypair) -> Callable[..., Dict[str, str]]:
    """Factory fixture: sign a payload and return the envelope as a dict.

    The signature covers the raw payload bytes and is produced with the
    secret key matching :func:`build_signer_cert`.
    """
    _, sk = ed25519_keypair

    def _make(payload: Optional[dict] = None) -> Dict[str, str]:
        raw = json.dumps(payload or {"v": 1}, sort_keys=True).encode("utf-8")
        sig = pysodium.crypto_sign_detached(raw, sk)
        return {
            "payload": base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii"),
            "signature": base64.urlsafe_b64encode(sig).rstrip(b"=").decode("ascii"),
        }

    return _make


# =========================================================================
# Certificate factories
# =========================================================================

def _base(dob: Optional[str], kid: Optional[str], envelope: Optional[dict]) -> dict:
    data = {
        "person": {"givenName": "Mario", "familyName": "Rossi"},
        "dateOfBirth": dob,
        "kid": kid,
    }
    if envelope is not None:
        data["envelope"] = envelope
    return data


@pytest.fixture
def make_vaccination() -> Callable[..., Certificate]:
    def _make(
        product: Optional[str] = PFIZER,
        dose: Optional[int] = 2,
        total: Optional[int] = 2,
        date: str = "2022-01-15",
        country: str = "IT",
        uvci: str = "URN:UVCI:01:IT:VAX#1",
        dob: Optional[str] = "1990-04-12",
        kid: Optional[str] = KID,
        envelope: Optional[dict] = None,
        history: Optional[List[dict]] = None,
    ) -> Certificate:
        data = _base(dob, kid, envelope)
        data["vaccinations"] = list(history or []) + [{
            "medicinalProduct": product,
            "doseNumber": dose,
            "totalSeriesOfDoses": total,
            "countryOfVaccination": country,
            "dateOfVaccination": date,
            "certificateIdentifier": uvci,
        }]
        return Certificate.model_validate(data)

    return _make


@pytest.fixture
def make_test_cert() -> Callable[..., Certificate]:
    def _make(
        type_of_test: str = RAPID,
        result: str = NOT_DETECTED,
        collected: str = "2022-03-14T20:00:00Z",
        uvci: str = "URN:UVCI:01:IT:TEST#1",
        dob: Optional[str] = "1990-04-12",
        kid: Optional[str] = KID,
        envelope: Optional[dict] = None,
    ) -> Certificate:
        data = _base(dob, kid, envelope)
        data["tests"] = [{
            "typeOfTest": type_of_test,
            "testResult": result,
            "dateTimeOfCollection": collected,
            "certificateIdentifier": uvci,
        }]
        return Certificate.model_validate(data)

    return _make


@pytest.fixture
def make_recovery() -> Callable[..., Certificate]:
    def _make(
        valid_from: Optional[str] = "2022-02-01",
        valid_until: str = "2022-07-31",
        uvci: str = "URN:UVCI:01:IT:REC#1",
        kid: Optional[str] = KID,
        envelope: Optional[dict] = None,
    ) -> Certificate:
        data = _base("1990-04-12", kid, envelope)
        data["recoveryStatements"] = [{
            "certificateValidFrom": valid_from,
            "certificateValidUntil": valid_until,
            "country": "IT",
            "certificateIdentifier": uvci,
        }]
        return Certificate.model_validate(data)

    return _make


@pytest.fixture
def make_exemption() -> Callable[..., Certificate]:
    def _make(
        valid_from: Optional[str] = "2022-01-01",
        valid_until: Optional[str] = "2022-12-31",
        uvci: str = "URN:UVCI:01:IT:EXE#1",
        kid: Optional[str] = KID,
        envelope: Optional[dict] = None,
    ) -> Certificate:
        data = _base("1990-04-12", kid, envelope)
        data["exemptions"] = [{
            "certificateValidFrom": valid_from,
            "certificateValidUntil": valid_until,
            "country": "IT",
            "certificateIdentifier": uvci,
        }]
        return Certificate.model_validate(data)

    return _make


def days_ago(days: int) -> str:
    """Date ``days`` before the real current date, as ``YYYY-MM-DD``."""
    return (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%d")


# =========================================================================
# Trust store
# =========================================================================

@pytest_asyncio.fixture
async def store(rule_dicts, signer_cert):
    """A set-up and loaded in-memory trust store."""
    s = InMemoryTrustStore()
    await s.set_up()
    await s.load(
        rules=rule_dicts,
        signatures={KID: signer_cert},
        revoked=[REVOKED_UVCI],
    )
    yield s
