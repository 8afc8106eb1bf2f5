# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Per-kind certificate validators.

One validator per payload kind (vaccination, test, recovery, exemption).
Each evaluates only the LAST entry of its sequence against the rule set
and the requested mode, and returns a :class:`ValidationResult`.

Any failure while reading the payload (missing field, malformed date,
absent rule) is reported as ``NOT_EU_DCC``: the certificate is not a
usable credential of that kind.  Nothing raised here ever reaches the
caller.

Vaccination policy per mode
---------------------------
The mode decides three things for a given vaccination status: whether
the certificate is rejected outright, whether a validity extension
applies (past the normal end, a supplementary test is required), and
whether a test is required even inside the normal window.  These are
the ``_vaccine_policy_*`` functions below; the rule names bounding each
window come from :data:`app.greenpass.rules.RULE_TABLE`.  A cell of that
table without a window must be rejected by the policy for every dose;
:func:`check_policy_covers_table` enforces this at import.  The booster
mode applies the visitor policy to vaccinations.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence

from app.greenpass.dates import (
    add_days,
    add_hours,
    end_of_day,
    is_at_least_years_old,
    parse_date,
    parse_datetime,
    start_of_day,
    to_iso,
)
from app.greenpass.issuer import ITALY, IssuerInfo
from app.greenpass.models import (
    Certificate,
    CertificateKind,
    CertificateStatus,
    Rule,
    ValidationMode,
    ValidationResult,
)
from app.greenpass.rules import (
    RULE_TABLE,
    RecoveryVariant,
    RuleWindow,
    TestType,
    VaccinationStatus,
    numeric_rule,
    window_for,
)

logger = logging.getLogger("greenpass.validators")

__all__ = [
    "EMA_VACCINES",
    "RECOVERY_BIS_OIDS",
    "TEST_DETECTED",
    "VaccinePolicy",
    "check_exemption",
    "check_policy_covers_table",
    "check_recovery",
    "check_test",
    "check_vaccination",
    "is_ema_vaccine",
    "is_recovery_bis",
    "vaccination_status",
    "vaccine_policy",
]

# Vaccine products
JOHNSON = "EU/1/20/1525"
MODERNA = "EU/1/20/1507"
PFIZER = "EU/1/20/1528"
ASTRAZENECA = "EU/1/21/1529"
COVISHIELD = "Covishield"
R_COVI = "R-COVI"
COVID19_RECOMBINANT = "Covid-19-recombinant"
SPUTNIK = "Sputnik-V"

EMA_VACCINES = frozenset({
    JOHNSON, MODERNA, PFIZER, ASTRAZENECA, COVISHIELD, R_COVI, COVID19_RECOMBINANT,
})

SAN_MARINO = "SM"

TEST_DETECTED = "260373001"
_TEST_TYPES = {t.value: t for t in TestType}

RECOVERY_BIS_OIDS = frozenset({
    "1.3.6.1.4.1.1847.2021.1.3",
    "1.3.6.1.4.1.0.1847.2021.1.3",
})

WORKER_AGE_THRESHOLD = 50

TEST_NEEDED_MESSAGE = "Test needed"

_S = CertificateStatus


def _result(code: CertificateStatus, message: str) -> ValidationResult:
    return ValidationResult(code=code, message=message)


def _holder_is_over(certificate: Certificate, as_of: datetime, years: int) -> bool:
    # An absent or unreadable date of birth never reaches the threshold.
    if not certificate.date_of_birth:
        return False
    try:
        born = parse_date(certificate.date_of_birth)
    except ValueError:
        return False
    return is_at_least_years_old(born, as_of, years)


# ======================================================================
# Vaccination
# ======================================================================


def is_ema_vaccine(product: Optional[str], country: Optional[str]) -> bool:
    """EMA-approved product, or Sputnik-V administered in San Marino."""
    return product in EMA_VACCINES or (product == SPUTNIK and country == SAN_MARINO)


def vaccination_status(product: str, dose_number: int, total_doses: int) -> VaccinationStatus:
    """Classify the last dose as not complete, complete or booster.

    A single-dose product (Johnson & Johnson) counts as booster from the
    second dose; every other product from the third.
    """
    if dose_number < total_doses:
        return VaccinationStatus.NOT_COMPLETE
    booster_from = 2 if product == JOHNSON else 3
    if dose_number >= booster_from:
        return VaccinationStatus.BOOSTER
    return VaccinationStatus.COMPLETE


@dataclass(frozen=True)
class VaccinePolicy:
    """What a mode allows for one vaccination status.

    Attributes:
        reject: Rejection reason; ``None`` if the dose is acceptable.
        extend: Apply the extended window (test required past the end).
        force_test: Require a test even inside the normal window.
    """

    reject: Optional[str] = None
    extend: bool = False
    force_test: bool = False


@dataclass(frozen=True)
class _DoseFacts:
    is_ema: bool
    is_italian: bool
    over_50: bool = False


_ACCEPT = VaccinePolicy()
_NOT_EMA = "Vaccine is not EMA"
_NOT_COMPLETE_NOT_EMA = "Vaccine not complete and not EMA"


def _vaccine_policy_normal(status: VaccinationStatus, facts: _DoseFacts) -> VaccinePolicy:
    if not facts.is_ema:
        return VaccinePolicy(reject=_NOT_EMA)
    return _ACCEPT


def _vaccine_policy_entry(status: VaccinationStatus, facts: _DoseFacts) -> VaccinePolicy:
    if not facts.is_ema:
        return VaccinePolicy(reject=_NOT_EMA)
    if status is VaccinationStatus.NOT_COMPLETE:
        return VaccinePolicy(reject="Required complete vaccination to travel to Italy")
    return _ACCEPT


def _vaccine_policy_super(status: VaccinationStatus, facts: _DoseFacts) -> VaccinePolicy:
    if status is VaccinationStatus.NOT_COMPLETE:
        return _ACCEPT if facts.is_ema else VaccinePolicy(reject=_NOT_COMPLETE_NOT_EMA)
    if status is VaccinationStatus.COMPLETE:
        return VaccinePolicy(
            extend=not facts.is_italian or not facts.is_ema,
            force_test=not facts.is_ema,
        )
    return VaccinePolicy(force_test=not facts.is_ema)


def _vaccine_policy_visitor(status: VaccinationStatus, facts: _DoseFacts) -> VaccinePolicy:
    if status is VaccinationStatus.NOT_COMPLETE:
        return VaccinePolicy(reject="Required complete vaccination")
    if status is VaccinationStatus.COMPLETE:
        return VaccinePolicy(force_test=True)
    return VaccinePolicy(force_test=not facts.is_ema)


def _vaccine_policy_work(status: VaccinationStatus, facts: _DoseFacts) -> VaccinePolicy:
    if not facts.over_50 and not facts.is_ema:
        return VaccinePolicy(reject="Not EMA vaccine is not valid for worker with age < 50 years")
    if status is VaccinationStatus.NOT_COMPLETE:
        return _ACCEPT if facts.is_ema else VaccinePolicy(reject=_NOT_COMPLETE_NOT_EMA)
    if status is VaccinationStatus.COMPLETE:
        return VaccinePolicy(
            extend=facts.over_50 and (not facts.is_italian or not facts.is_ema),
            force_test=facts.over_50 and not facts.is_ema,
        )
    return _ACCEPT


_VACCINE_POLICIES: Dict[ValidationMode, Callable[[VaccinationStatus, _DoseFacts], VaccinePolicy]] = {
    ValidationMode.NORMAL: _vaccine_policy_normal,
    ValidationMode.ENTRY: _vaccine_policy_entry,
    ValidationMode.SUPER: _vaccine_policy_super,
    ValidationMode.VISITOR: _vaccine_policy_visitor,
    ValidationMode.BOOSTER: _vaccine_policy_visitor,
    ValidationMode.WORK: _vaccine_policy_work,
}


def vaccine_policy(
    mode: ValidationMode,
    status: VaccinationStatus,
    is_ema: bool,
    is_italian: bool,
    over_50: bool = False,
) -> VaccinePolicy:
    return _VACCINE_POLICIES[mode](status, _DoseFacts(is_ema, is_italian, over_50))


def check_policy_covers_table(table=RULE_TABLE) -> None:
    """Ensure the vaccine policy rejects every vaccination cell without rules.

    Raises:
        ValueError: Listing the (status, mode) pairs some dose would reach
            without a window.
    """
    uncovered = sorted({
        (status.value, mode.value)
        for (kind, status, mode), window in table.items()
        if kind is CertificateKind.VACCINATION and window is None
        for is_ema, is_italian, over_50 in itertools.product((True, False), repeat=3)
        if not vaccine_policy(mode, status, is_ema, is_italian, over_50).reject
    })
    if uncovered:
        raise ValueError(f"Vaccine policy accepts doses without a rule window: {uncovered}")


check_policy_covers_table()


def check_vaccination(
    certificate: Certificate,
    rules: Sequence[Rule],
    mode: ValidationMode,
    now: datetime,
) -> ValidationResult:
    try:
        last = certificate.vaccinations[-1]
        product = last.medicinal_product

        if not product:
            return _result(_S.NOT_VALID, "Vaccine Type is empty")
        if last.dose_number is None or last.total_series_of_doses is None:
            raise ValueError("dose number or total series of doses is missing")

        doses = f"Doses {last.dose_number}/{last.total_series_of_doses}"
        if last.dose_number <= 0:
            return _result(_S.NOT_VALID, f"{doses} - Invalid number of doses")

        vaccinated_on = parse_date(last.date_of_vaccination)
        status = vaccination_status(product, last.dose_number, last.total_series_of_doses)

        # Workers are judged by their age on the day of vaccination.
        over_50 = (
            mode is ValidationMode.WORK
            and _holder_is_over(certificate, vaccinated_on, WORKER_AGE_THRESHOLD)
        )
        policy = vaccine_policy(
            mode,
            status,
            is_ema=is_ema_vaccine(product, last.country_of_vaccination),
            is_italian=last.country_of_vaccination == ITALY,
            over_50=over_50,
        )
        if policy.reject:
            return _result(_S.NOT_VALID, policy.reject)

        window = window_for(CertificateKind.VACCINATION, status, mode)
        return _judge_vaccination_window(doses, vaccinated_on, window, policy, rules, product, now)
    except Exception as exc:
        logger.debug("Vaccination payload rejected: %s", exc)
        return _result(_S.NOT_EU_DCC, f"Vaccination is not present or is not a green pass : {exc}")


def _judge_vaccination_window(
    doses: str,
    vaccinated_on: datetime,
    window: RuleWindow,
    policy: VaccinePolicy,
    rules: Sequence[Rule],
    product: str,
    now: datetime,
) -> ValidationResult:
    rule_type = product if window.typed else None
    start = add_days(vaccinated_on, numeric_rule(rules, window.start, rule_type))
    end = add_days(vaccinated_on, numeric_rule(rules, window.end, rule_type))
    extension = None
    if policy.extend and window.extended:
        extension = numeric_rule(rules, window.extended)

    start_now = start_of_day(now)
    end_now = end_of_day(now)

    if start > end_now:
        return _result(_S.NOT_VALID_YET, f"{doses} - Vaccination is not valid yet, starts at : {to_iso(start)}")

    if end_now <= end:
        if policy.force_test:
            return _result(_S.TEST_NEEDED, TEST_NEEDED_MESSAGE)
        return _result(_S.VALID, f"{doses} - Vaccination is valid [ {to_iso(start)} - {to_iso(end)} ] ")

    if extension is not None and end_now < add_days(end, extension):
        return _result(_S.TEST_NEEDED, TEST_NEEDED_MESSAGE)

    if start_now > end:
        return _result(_S.NOT_VALID, f"{doses} - Vaccination is expired at : {to_iso(end)}")

    # End of validity falls on today but before its last millisecond.
    return _result(_S.NOT_VALID, "Vaccination format is invalid")


# ======================================================================
# Test
# ======================================================================


def check_test(
    certificate: Certificate,
    rules: Sequence[Rule],
    mode: ValidationMode,
    now: datetime,
) -> ValidationResult:
    if mode in (ValidationMode.BOOSTER, ValidationMode.SUPER):
        return _result(_S.NOT_VALID, "Not valid. Super DGP or Booster required.")
    try:
        if mode is ValidationMode.WORK and _holder_is_over(certificate, now, WORKER_AGE_THRESHOLD):
            return _result(_S.NOT_VALID, "Not valid for workers with age >= 50 years.")

        last = certificate.tests[-1]
        test_type = _TEST_TYPES.get(last.type_of_test)
        if test_type is None:
            return _result(_S.NOT_VALID, "Test type is not valid")

        window = window_for(CertificateKind.TEST, test_type, mode)
        if window is None:
            return _result(_S.NOT_VALID, f"Test is not accepted in {mode.value} mode")

        collected = parse_datetime(last.date_time_of_collection)
        start = add_hours(collected, numeric_rule(rules, window.start))
        end = add_hours(collected, numeric_rule(rules, window.end))

        if last.test_result == TEST_DETECTED:
            return _result(_S.NOT_VALID, "Test Result is DETECTED")
        if start > now:
            return _result(_S.NOT_VALID_YET, f"Test Result is not valid yet, starts at : {to_iso(start)}")
        if now > end:
            return _result(_S.NOT_VALID, f"Test Result is expired at : {to_iso(end)}")
        return _result(_S.VALID, f"Test Result is valid [ {to_iso(start)} - {to_iso(end)} ] ")
    except Exception as exc:
        logger.debug("Test payload rejected: %s", exc)
        return _result(_S.NOT_EU_DCC, f"Test Result is not present or is not a green pass : {exc}")


# ======================================================================
# Recovery
# ======================================================================


def is_recovery_bis(issuer: IssuerInfo) -> bool:
    return issuer.country == ITALY and issuer.oid in RECOVERY_BIS_OIDS


def check_recovery(
    certificate: Certificate,
    rules: Sequence[Rule],
    mode: ValidationMode,
    now: datetime,
    issuer: IssuerInfo,
) -> ValidationResult:
    try:
        bis = is_recovery_bis(issuer)
        variant = RecoveryVariant.BIS if bis else RecoveryVariant.STANDARD
        window = window_for(CertificateKind.RECOVERY, variant, mode)
        start_days = numeric_rule(rules, window.start)
        end_days = numeric_rule(rules, window.end)

        last = certificate.recovery_statements[-1]
        valid_from = parse_date(last.certificate_valid_from)

        # The end offset counts from the shifted start, not from valid_from.
        start = add_days(valid_from, start_days)
        end = add_days(start, end_days)

        if start > now:
            return _result(_S.NOT_VALID_YET, f"Recovery statement is not valid yet, starts at : {to_iso(start)}")
        if now > end:
            return _result(_S.NOT_VALID, f"Recovery statement is expired at : {to_iso(end)}")
        if mode is ValidationMode.BOOSTER and not bis:
            return _result(_S.TEST_NEEDED, TEST_NEEDED_MESSAGE)
        return _result(_S.VALID, f"Recovery statement is valid [ {to_iso(start)} - {to_iso(end)} ] ")
    except Exception as exc:
        logger.debug("Recovery payload rejected: %s", exc)
        return _result(_S.NOT_EU_DCC, f"Recovery statement is not present or is not a green pass : {exc}")


# ======================================================================
# Exemption
# ======================================================================


def check_exemption(
    certificate: Certificate,
    mode: ValidationMode,
    now: datetime,
) -> ValidationResult:
    if mode is ValidationMode.BOOSTER:
        return _result(_S.TEST_NEEDED, TEST_NEEDED_MESSAGE)
    if mode is ValidationMode.ENTRY:
        return _result(_S.NOT_VALID, "Exemption is not valid")
    try:
        last = certificate.exemptions[-1]
        start = parse_date(last.certificate_valid_from)
        end = parse_date(last.certificate_valid_until)

        if start > now:
            return _result(_S.NOT_VALID_YET, f"Exemption is not valid yet, starts at : {to_iso(start)}")
        if now > end:
            return _result(_S.NOT_VALID, f"Exemption is expired at : {to_iso(end)}")
        return _result(_S.VALID, f"Exemption is valid [ {to_iso(start)} - {to_iso(end)} ] ")
    except Exception as exc:
        logger.debug("Exemption payload rejected: %s", exc)
        return _result(_S.NOT_EU_DCC, f"Exemption is not present or is not a green pass : {exc}")
