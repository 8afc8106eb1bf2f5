# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Revocation checking for certificate identifiers (UVCIs).

Two sources are consulted, in order, for each identifier:

1. **Static blacklist**: the value of the ``black_list_uvci`` rule, a
   ``;``-separated list of identifiers shipped with the rule set.
2. **Revocation list**: the trust store's ``is_uvci_revoked`` lookup
   (the national certificate revocation list).

Every entry of the certificate's payload is checked, not just the last
one: a revoked earlier dose invalidates the whole certificate even
though only the last entry is used for the validity decision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, FrozenSet, List, Optional, Sequence

from app.greenpass.models import Certificate, Rule
from app.greenpass.rules import BLACKLIST_RULE, find_rule

if TYPE_CHECKING:
    from app.greenpass.store import TrustStore

logger = logging.getLogger("greenpass.revocation")

__all__ = [
    "RevocationCheck",
    "blacklist_from_rules",
    "certificate_identifiers",
    "check_revocation",
    "parse_blacklist",
]

BLACKLIST_SEPARATOR = ";"


@dataclass(frozen=True)
class RevocationCheck:
    """Outcome of a revocation check.

    Attributes:
        revoked: Whether any identifier is revoked.
        uvci: The first revoked identifier found, if any.
        source: ``"blacklist"`` or ``"store"`` when revoked.
    """

    revoked: bool
    uvci: Optional[str] = None
    source: Optional[str] = None


def parse_blacklist(value: object) -> FrozenSet[str]:
    return frozenset(
        item for item in str(value).split(BLACKLIST_SEPARATOR) if item != ""
    )


def blacklist_from_rules(rules: Sequence[Rule]) -> FrozenSet[str]:
    rule = find_rule(rules, BLACKLIST_RULE, BLACKLIST_RULE)
    if rule is None:
        logger.warning("Rule set has no %s entry; static blacklist is empty", BLACKLIST_RULE)
        return frozenset()
    return parse_blacklist(rule.value)


def certificate_identifiers(certificate: Certificate) -> List[str]:
    """Identifiers of every entry in the populated payload, oldest first."""
    return [
        entry.certificate_identifier
        for entry in certificate.entries()
        if entry.certificate_identifier
    ]


async def check_revocation(
    certificate: Certificate,
    rules: Sequence[Rule],
    store: "TrustStore",
) -> RevocationCheck:
    """Check every certificate identifier against both revocation sources."""
    blacklist = blacklist_from_rules(rules)

    for uvci in certificate_identifiers(certificate):
        if uvci in blacklist:
            logger.warning("UVCI %s is in the static blacklist", uvci)
            return RevocationCheck(revoked=True, uvci=uvci, source="blacklist")
        if await store.is_uvci_revoked(uvci):
            logger.warning("UVCI %s is on the revocation list", uvci)
            return RevocationCheck(revoked=True, uvci=uvci, source="store")

    return RevocationCheck(revoked=False)
