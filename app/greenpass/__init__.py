# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Green pass certificate validation engine.

Decides whether a decoded digital COVID certificate is valid under a
requested validation mode, combining signature verification,
revocation checks and the national validity rules.
"""

from .exceptions import (
    GreenPassError,
    RuleNotFoundError,
    TrustStoreError,
    TrustStoreNotReadyError,
    TrustStoreNotSetUpError,
)
from .models import (
    Certificate,
    CertificateStatus,
    Rule,
    ValidationMode,
    ValidationResponse,
    ValidationResult,
)
from .store import InMemoryTrustStore, TrustStore
from .orchestrator import Validator, check_rules, check_signature, validate

__all__ = [
    "Certificate",
    "CertificateStatus",
    "GreenPassError",
    "InMemoryTrustStore",
    "Rule",
    "RuleNotFoundError",
    "TrustStore",
    "TrustStoreError",
    "TrustStoreNotReadyError",
    "TrustStoreNotSetUpError",
    "ValidationMode",
    "ValidationResponse",
    "ValidationResult",
    "Validator",
    "check_rules",
    "check_signature",
    "validate",
]
