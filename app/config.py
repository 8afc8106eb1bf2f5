# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Green pass validator configuration.

Defaults may be overridden via environment variables.
"""

import os

# =============================================================================
# VALIDATION
# =============================================================================

DEFAULT_MODE: str = os.getenv("GP_DEFAULT_MODE", "NORMAL")

# JSON snapshot of rules, signer certificates and revoked UVCIs loaded at
# startup.  Unset means the service starts not ready.
TRUST_SNAPSHOT: str = os.getenv("GP_TRUST_SNAPSHOT", "")

# =============================================================================
# NETWORK
# =============================================================================

HTTP_HOST: str = os.getenv("GP_HTTP_HOST", "0.0.0.0")
HTTP_PORT: int = int(os.getenv("GP_HTTP_PORT", "8000"))

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: str = os.getenv("GP_LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("GP_LOG_FORMAT", "json")
