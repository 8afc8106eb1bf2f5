# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Trust store interface and an in-memory implementation.

The validator never fetches rules, signer certificates or revocation
lists itself.  It talks to a *trust store* through the
:class:`TrustStore` protocol: a readiness check, three read accessors,
a per-identifier revocation lookup and a ``teardown`` hook called once
at the end of every validation call.

:class:`InMemoryTrustStore` keeps a snapshot in process memory.  It is
what the HTTP service runs on (loaded from a JSON snapshot at startup)
and what the test suite uses.  Snapshot format::

    {
        "rules": [{"name": "...", "type": "GENERIC", "value": "..."}],
        "signatures": {"<kid>": "<PEM or base64 DER>"},
        "revoked": ["URN:UVCI:..."]
    }
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Any,
    Collection,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from app.greenpass.exceptions import TrustStoreNotSetUpError
from app.greenpass.models import Rule
from app.greenpass.rules import missing_rules

logger = logging.getLogger("greenpass.store")

__all__ = ["InMemoryTrustStore", "StoreMetrics", "TrustStore"]

_SNAPSHOT_MEMBERS = {"rules": list, "signatures": dict, "revoked": list}

SignerCert = Union[bytes, str]


@runtime_checkable
class TrustStore(Protocol):
    """Read interface of the rules / trust list collaborator."""

    async def check_set_up(self) -> None:
        """Raise ``TrustStoreNotSetUpError`` if never initialized."""
        ...

    async def is_ready(self) -> bool:
        ...

    async def get_rules(self) -> List[Rule]:
        ...

    async def get_signatures(self) -> Mapping[str, SignerCert]:
        ...

    async def get_signature_list(self) -> Collection[str]:
        ...

    async def is_uvci_revoked(self, uvci: str) -> bool:
        ...

    async def teardown(self) -> None:
        ...


@dataclass
class StoreMetrics:
    """Counters for the in-memory trust store."""

    loads: int = 0
    revocation_lookups: int = 0
    teardowns: int = 0

    def to_dict(self) -> dict:
        return {
            "loads": self.loads,
            "revocation_lookups": self.revocation_lookups,
            "teardowns": self.teardowns,
        }


class InMemoryTrustStore:
    """Trust store backed by an in-process snapshot.

    The store must be set up (``set_up()``) before use and becomes ready
    once a snapshot has been loaded.  Loading replaces the whole
    snapshot atomically under a lock, so concurrent validations always
    see either the old or the new data set, never a mix.
    """

    def __init__(self) -> None:
        self._set_up = False
        self._rules: List[Rule] = []
        self._signatures: Dict[str, SignerCert] = {}
        self._revoked: frozenset[str] = frozenset()
        self._loaded_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self._metrics = StoreMetrics()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def set_up(self) -> None:
        self._set_up = True

    async def load(
        self,
        rules: Iterable[Union[Rule, Mapping[str, Any]]],
        signatures: Optional[Mapping[str, SignerCert]] = None,
        revoked: Optional[Iterable[str]] = None,
    ) -> None:
        """Replace the current snapshot and mark the store ready.

        Rule entries may be :class:`Rule` instances or plain mappings.
        Rule names referenced by the validator but absent from the
        snapshot are logged, not rejected: the affected requests will
        resolve to ``NOT_EU_DCC``.
        """
        parsed = [r if isinstance(r, Rule) else Rule.model_validate(r) for r in rules]
        absent = missing_rules(parsed)
        if absent:
            logger.warning("Rule snapshot lacks %d rule(s): %s", len(absent), ", ".join(absent))

        async with self._lock:
            self._rules = parsed
            self._signatures = dict(signatures or {})
            self._revoked = frozenset(revoked or ())
            self._loaded_at = time.time()
            self._metrics.loads += 1

        logger.info(
            "Trust store loaded: rules=%d signatures=%d revoked=%d",
            len(parsed),
            len(self._signatures),
            len(self._revoked),
        )

    async def load_snapshot(self, path: Union[str, Path]) -> None:
        """Load a JSON snapshot file (see module docstring).

        Raises:
            OSError: If the file cannot be read.
            ValueError: If the file is not JSON or not a snapshot object.
        """
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"Trust snapshot must be a JSON object, got {type(data).__name__}")
        for key, expected in _SNAPSHOT_MEMBERS.items():
            if key in data and not isinstance(data[key], expected):
                raise ValueError(
                    f"Trust snapshot member {key!r} must be a {expected.__name__}, "
                    f"got {type(data[key]).__name__}"
                )
        await self.load(
            rules=data.get("rules", []),
            signatures=data.get("signatures", {}),
            revoked=data.get("revoked", []),
        )

    # ------------------------------------------------------------------
    # TrustStore protocol
    # ------------------------------------------------------------------

    async def check_set_up(self) -> None:
        if not self._set_up:
            raise TrustStoreNotSetUpError()

    async def is_ready(self) -> bool:
        return self._loaded_at is not None

    async def get_rules(self) -> List[Rule]:
        async with self._lock:
            return list(self._rules)

    async def get_signatures(self) -> Mapping[str, SignerCert]:
        async with self._lock:
            return dict(self._signatures)

    async def get_signature_list(self) -> Collection[str]:
        async with self._lock:
            return frozenset(self._signatures)

    async def is_uvci_revoked(self, uvci: str) -> bool:
        self._metrics.revocation_lookups += 1
        return uvci in self._revoked

    async def teardown(self) -> None:
        # Nothing is held per call; count for observability.
        self._metrics.teardowns += 1

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        d = self._metrics.to_dict()
        d["ready"] = self._loaded_at is not None
        d["rules"] = len(self._rules)
        d["signatures"] = len(self._signatures)
        d["revoked"] = len(self._revoked)
        d["loaded_at"] = self._loaded_at
        return d
