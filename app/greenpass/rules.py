# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Rule lookup and the rule-name table.

The national rule set is a flat list of ``{name, type, value}`` entries.
Which entries a validator needs depends on the certificate kind, the
variant of that kind (vaccination status, test type, recovery path) and
the requested mode.  That dispatch is spelled out below as one explicit
table, ``RULE_TABLE``, which is checked for completeness at import time
so that a missing combination fails loudly at startup instead of
surfacing as a lookup failure on some rarely exercised request.

A table value of ``None`` means the mode rejects that variant outright
and no rules are consulted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from app.greenpass.exceptions import RuleNotFoundError
from app.greenpass.models import GENERIC_TYPE, CertificateKind, Rule, ValidationMode

__all__ = [
    "BLACKLIST_RULE",
    "RULE_TABLE",
    "RecoveryVariant",
    "RuleWindow",
    "TestType",
    "VaccinationStatus",
    "check_rule_table",
    "find_rule",
    "missing_rules",
    "numeric_rule",
    "required_rule_names",
    "rule_value",
    "window_for",
]

Number = Union[int, float]

BLACKLIST_RULE = "black_list_uvci"


# ======================================================================
# Variants
# ======================================================================


class VaccinationStatus(str, Enum):
    NOT_COMPLETE = "Not complete"
    COMPLETE = "Complete"
    BOOSTER = "Booster"


class TestType(str, Enum):
    MOLECULAR = "LP6464-4"
    RAPID = "LP217198-3"


class RecoveryVariant(str, Enum):
    STANDARD = "standard"
    BIS = "bis"


VARIANTS: Dict[CertificateKind, Tuple[Enum, ...]] = {
    CertificateKind.VACCINATION: tuple(VaccinationStatus),
    CertificateKind.TEST: tuple(TestType),
    CertificateKind.RECOVERY: tuple(RecoveryVariant),
}


@dataclass(frozen=True)
class RuleWindow:
    """Names of the rules bounding a validity window.

    Attributes:
        start: Rule giving the offset of the window start.
        end: Rule giving the offset of the window end.
        typed: Look the rules up under the vaccine product code rather
            than the generic type.
        extended: Optional rule giving a further extension past ``end``
            during which a supplementary test is required.
    """

    start: str
    end: str
    typed: bool = False
    extended: Optional[str] = None


# ======================================================================
# Rule-name table
# ======================================================================

_NOT_COMPLETE = RuleWindow(
    "vaccine_start_day_not_complete", "vaccine_end_day_not_complete", typed=True,
)
_COMPLETE_IT = RuleWindow("vaccine_start_day_complete_IT", "vaccine_end_day_complete_IT")
_COMPLETE_IT_EXTENDED = RuleWindow(
    "vaccine_start_day_complete_IT",
    "vaccine_end_day_complete_IT",
    extended="vaccine_end_day_complete_extended_EMA",
)
_COMPLETE_NOT_IT = RuleWindow("vaccine_start_day_complete_NOT_IT", "vaccine_end_day_complete_NOT_IT")
_BOOSTER_IT = RuleWindow("vaccine_start_day_booster_IT", "vaccine_end_day_booster_IT")
_BOOSTER_NOT_IT = RuleWindow("vaccine_start_day_booster_NOT_IT", "vaccine_end_day_booster_NOT_IT")

_MOLECULAR = RuleWindow("molecular_test_start_hours", "molecular_test_end_hours")
_RAPID = RuleWindow("rapid_test_start_hours", "rapid_test_end_hours")

_RECOVERY_IT = RuleWindow("recovery_cert_start_day_IT", "recovery_cert_end_day_IT")
_RECOVERY_NOT_IT = RuleWindow("recovery_cert_start_day_NOT_IT", "recovery_cert_end_day_NOT_IT")
_RECOVERY_BIS = RuleWindow("recovery_pv_cert_start_day", "recovery_pv_cert_end_day")

_M = ValidationMode
_V = VaccinationStatus
_VAX = CertificateKind.VACCINATION
_TEST = CertificateKind.TEST
_REC = CertificateKind.RECOVERY

RuleKey = Tuple[CertificateKind, Enum, ValidationMode]

RULE_TABLE: Dict[RuleKey, Optional[RuleWindow]] = {
    # Vaccination, not complete
    (_VAX, _V.NOT_COMPLETE, _M.NORMAL): _NOT_COMPLETE,
    (_VAX, _V.NOT_COMPLETE, _M.SUPER): _NOT_COMPLETE,
    (_VAX, _V.NOT_COMPLETE, _M.WORK): _NOT_COMPLETE,
    (_VAX, _V.NOT_COMPLETE, _M.ENTRY): None,
    (_VAX, _V.NOT_COMPLETE, _M.VISITOR): None,
    (_VAX, _V.NOT_COMPLETE, _M.BOOSTER): None,
    # Vaccination, complete cycle
    (_VAX, _V.COMPLETE, _M.NORMAL): _COMPLETE_IT,
    (_VAX, _V.COMPLETE, _M.SUPER): _COMPLETE_IT_EXTENDED,
    (_VAX, _V.COMPLETE, _M.WORK): _COMPLETE_IT_EXTENDED,
    (_VAX, _V.COMPLETE, _M.ENTRY): _COMPLETE_NOT_IT,
    (_VAX, _V.COMPLETE, _M.VISITOR): _COMPLETE_IT,
    (_VAX, _V.COMPLETE, _M.BOOSTER): _COMPLETE_IT,
    # Vaccination, booster dose
    (_VAX, _V.BOOSTER, _M.NORMAL): _BOOSTER_IT,
    (_VAX, _V.BOOSTER, _M.SUPER): _BOOSTER_IT,
    (_VAX, _V.BOOSTER, _M.WORK): _BOOSTER_IT,
    (_VAX, _V.BOOSTER, _M.ENTRY): _BOOSTER_NOT_IT,
    (_VAX, _V.BOOSTER, _M.VISITOR): _BOOSTER_IT,
    (_VAX, _V.BOOSTER, _M.BOOSTER): _BOOSTER_IT,
    # Tests (super and booster modes never accept a test)
    **{(_TEST, TestType.MOLECULAR, mode): _MOLECULAR for mode in _M},
    **{(_TEST, TestType.RAPID, mode): _RAPID for mode in _M},
    (_TEST, TestType.MOLECULAR, _M.SUPER): None,
    (_TEST, TestType.MOLECULAR, _M.BOOSTER): None,
    (_TEST, TestType.RAPID, _M.SUPER): None,
    (_TEST, TestType.RAPID, _M.BOOSTER): None,
    # Recovery
    **{(_REC, RecoveryVariant.STANDARD, mode): _RECOVERY_IT for mode in _M},
    (_REC, RecoveryVariant.STANDARD, _M.ENTRY): _RECOVERY_NOT_IT,
    **{(_REC, RecoveryVariant.BIS, mode): _RECOVERY_BIS for mode in _M},
}


def check_rule_table(table: Dict[RuleKey, Optional[RuleWindow]] = RULE_TABLE) -> None:
    """Ensure every (kind, variant, mode) combination has an entry.

    Raises:
        ValueError: Listing the missing combinations.
    """
    missing = [
        (kind.value, variant.value, mode.value)
        for kind, variants in VARIANTS.items()
        for variant in variants
        for mode in ValidationMode
        if (kind, variant, mode) not in table
    ]
    if missing:
        raise ValueError(f"Rule table is incomplete: {missing}")


check_rule_table()


def window_for(kind: CertificateKind, variant: Enum, mode: ValidationMode) -> Optional[RuleWindow]:
    return RULE_TABLE[(kind, variant, mode)]


def required_rule_names() -> Set[str]:
    """Generic rule names referenced by the table, plus the blacklist."""
    names = {BLACKLIST_RULE}
    for window in RULE_TABLE.values():
        if window is None or window.typed:
            continue
        names.update((window.start, window.end))
        if window.extended:
            names.add(window.extended)
    return names


def missing_rules(rules: Iterable[Rule]) -> List[str]:
    """Generic rule names referenced by the table but absent from ``rules``."""
    present = {rule.name for rule in rules}
    return sorted(required_rule_names() - present)


# ======================================================================
# Lookup
# ======================================================================


def find_rule(rules: Sequence[Rule], name: str, type: Optional[str] = None) -> Optional[Rule]:
    """Return the first rule matching ``name`` and ``type``.

    An omitted ``type`` selects the generic type.
    """
    wanted = type or GENERIC_TYPE
    for rule in rules:
        if rule.name == name and rule.type == wanted:
            return rule
    return None


def rule_value(rules: Sequence[Rule], name: str, type: Optional[str] = None) -> Union[Number, str]:
    rule = find_rule(rules, name, type)
    if rule is None:
        raise RuleNotFoundError(name, type or GENERIC_TYPE)
    return rule.value


def numeric_rule(rules: Sequence[Rule], name: str, type: Optional[str] = None) -> Number:
    """Look up a rule whose value is a day or hour offset.

    Raises:
        RuleNotFoundError: If the rule is absent.
        ValueError: If the value is not numeric.
    """
    value = rule_value(rules, name, type)
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return float(text)
