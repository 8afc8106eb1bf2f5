# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Certificate validation orchestrator.

Combines the three independent checks performed on every decoded
certificate into one response:

1. **Signature**: the certificate envelope verifies against the signer
   certificate named by its ``kid``.
2. **Revocation**: no certificate identifier on the payload appears in
   the static blacklist or on the revocation list.
3. **Rules**: the last entry of the payload is valid today under the
   requested mode (per-kind validators).

The signature branch runs concurrently with the rules pipeline
(revocation, then per-kind validation); both are joined before the
response is assembled.  A failed signature always overrides the rules
outcome with ``NOT_VALID``.

Every public call opens one trust store *session*: the store must be
set up and ready, and ``teardown()`` is invoked exactly once when the
call ends, whatever the outcome.  Trust store failures are the only
exceptions a caller can observe; every certificate irregularity is
reported through the status code.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional, Union

from app.greenpass.dates import utc_now
from app.greenpass.exceptions import TrustStoreNotReadyError
from app.greenpass.issuer import IssuerInfo, read_issuer_info
from app.greenpass.models import (
    Certificate,
    CertificateKind,
    CertificateStatus,
    ValidationMode,
    ValidationResponse,
    ValidationResult,
)
from app.greenpass.revocation import check_revocation
from app.greenpass.signature import verify_certificate_signature
from app.greenpass.store import TrustStore
from app.greenpass.validators import (
    check_exemption,
    check_recovery,
    check_test,
    check_vaccination,
)

logger = logging.getLogger("greenpass.orchestrator")

__all__ = [
    "Validator",
    "build_response",
    "check_rules",
    "check_signature",
    "validate",
]

IssuerInfoReader = Callable[[Union[bytes, str, None]], IssuerInfo]
Clock = Callable[[], datetime]


class Validator:
    """Validates decoded certificates against a trust store.

    The validator itself is stateless: the store, the issuer info
    reader and the clock are injected, and nothing is retained between
    calls, so one instance may serve any number of concurrent requests.

    Parameters
    ----------
    store : TrustStore
        Source of rules, signer certificates and revocation lookups.
    issuer_info_reader : callable
        Extracts issuer country / extended key usage from a signer
        certificate.  Defaults to :func:`read_issuer_info`.
    clock : callable
        Returns the current UTC time; evaluated once per call.
    """

    def __init__(
        self,
        store: TrustStore,
        issuer_info_reader: IssuerInfoReader = read_issuer_info,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._read_issuer_info = issuer_info_reader
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check_signature(self, certificate: Certificate) -> bool:
        """Whether the certificate signature verifies against a trusted key."""
        async with self._session():
            return await self._verify_signature(certificate)

    async def check_rules(
        self,
        certificate: Certificate,
        mode: ValidationMode = ValidationMode.NORMAL,
    ) -> ValidationResult:
        """Revocation plus per-kind rule evaluation, without the signature."""
        async with self._session():
            return await self._evaluate_rules(certificate, mode, self._clock())

    async def validate(
        self,
        certificate: Certificate,
        mode: ValidationMode = ValidationMode.NORMAL,
    ) -> ValidationResponse:
        """Full validation: signature and rules, merged into one response.

        Raises
        ------
        TrustStoreError
            If the trust store is not set up or not ready.
        """
        started = time.perf_counter()
        now = self._clock()

        async with self._session():
            signature_ok, rules_result = await _join(
                self._verify_signature(certificate),
                self._evaluate_rules(certificate, mode, now),
            )

        response = build_response(certificate, rules_result, signature_ok)
        logger.info(
            "Validated kid=%s mode=%s code=%s signature=%s elapsed_ms=%.1f",
            certificate.kid,
            mode.value,
            response.code.value,
            signature_ok,
            (time.perf_counter() - started) * 1000,
        )
        return response

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[None]:
        try:
            await self._store.check_set_up()
            if not await self._store.is_ready():
                logger.error("Trust store is not ready")
                raise TrustStoreNotReadyError()
            yield
        finally:
            await self._store.teardown()

    async def _verify_signature(self, certificate: Certificate) -> bool:
        signature_list = await self._store.get_signature_list()
        signatures = await self._store.get_signatures()
        verified = verify_certificate_signature(certificate, signatures, signature_list)
        if not verified:
            logger.info("Signature not verified for kid=%s", certificate.kid)
        return verified

    async def _evaluate_rules(
        self,
        certificate: Certificate,
        mode: ValidationMode,
        now: datetime,
    ) -> ValidationResult:
        rules = await self._store.get_rules()

        revocation = await check_revocation(certificate, rules, self._store)
        if revocation.revoked:
            return ValidationResult(code=CertificateStatus.REVOKED, message="UVCI is in blacklist")

        kind = certificate.kind
        if kind is CertificateKind.VACCINATION:
            result = check_vaccination(certificate, rules, mode, now)
        elif kind is CertificateKind.TEST:
            result = check_test(certificate, rules, mode, now)
        elif kind is CertificateKind.RECOVERY:
            issuer = await self._issuer_info(certificate)
            result = check_recovery(certificate, rules, mode, now, issuer)
        elif kind is CertificateKind.EXEMPTION:
            result = check_exemption(certificate, mode, now)
        else:
            result = ValidationResult(
                code=CertificateStatus.NOT_EU_DCC,
                message="No vaccination, test, exemption or recovery statement found in payload",
            )

        logger.debug(
            "Rules evaluated: kind=%s mode=%s code=%s",
            kind.value if kind else None,
            mode.value,
            result.code.value,
        )
        return result

    async def _issuer_info(self, certificate: Certificate) -> IssuerInfo:
        if not certificate.kid:
            return IssuerInfo()
        signatures = await self._store.get_signatures()
        return self._read_issuer_info(signatures.get(certificate.kid))


# ======================================================================
# Helpers
# ======================================================================


async def _join(signature_step, rules_step):
    """Run both branches to completion, then surface the first failure."""
    signature_ok, rules_result = await asyncio.gather(
        signature_step, rules_step, return_exceptions=True,
    )
    for outcome in (signature_ok, rules_result):
        if isinstance(outcome, BaseException):
            raise outcome
    return signature_ok, rules_result


def build_response(
    certificate: Certificate,
    rules_result: ValidationResult,
    signature_ok: bool,
) -> ValidationResponse:
    """Merge holder identity with the final status.

    A signature failure replaces whatever the rules decided.
    """
    result = rules_result
    if not signature_ok:
        result = ValidationResult(code=CertificateStatus.NOT_VALID, message="Invalid signature")

    person: Optional[str] = (certificate.person.full_name or None) if certificate.person else None
    return ValidationResponse(
        person=person,
        date_of_birth=certificate.date_of_birth or None,
        code=result.code,
        message=result.message,
        result=result.result,
    )


# ======================================================================
# Module-level convenience
# ======================================================================


async def validate(
    store: TrustStore,
    certificate: Certificate,
    mode: ValidationMode = ValidationMode.NORMAL,
) -> ValidationResponse:
    return await Validator(store).validate(certificate, mode)


async def check_rules(
    store: TrustStore,
    certificate: Certificate,
    mode: ValidationMode = ValidationMode.NORMAL,
) -> ValidationResult:
    return await Validator(store).check_rules(certificate, mode)


async def check_signature(store: TrustStore, certificate: Certificate) -> bool:
    return await Validator(store).check_signature(certificate)
