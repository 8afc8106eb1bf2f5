# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Green pass validator exceptions.

Only trust store failures escape a validation call.  Everything else
raised inside the engine is absorbed into a certificate status code.
"""


class GreenPassError(Exception):
    """Base exception for green pass validation errors."""
    pass


class TrustStoreError(GreenPassError):
    """Infrastructure failure in the rules / trust list collaborator."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class TrustStoreNotSetUpError(TrustStoreError):
    """The trust store was never initialized."""

    def __init__(self, message: str = "Trust store is not set up"):
        super().__init__("TRUST_STORE_NOT_SET_UP", message)


class TrustStoreNotReadyError(TrustStoreError):
    """The trust store has not loaded rules and keys yet."""

    def __init__(self, message: str = "Cache is not ready!"):
        super().__init__("TRUST_STORE_NOT_READY", message)


class RuleNotFoundError(GreenPassError):
    """A named rule is missing from the rule set."""

    def __init__(self, name: str, type: str):
        self.name = name
        self.type = type
        super().__init__(f"Rule '{name}' of type '{type}' not found")
