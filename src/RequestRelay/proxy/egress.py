# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.proxy.egress",
#   "purpose": "Egress policy guard blocking internal and loopback destinations in restricted mode",
#   "sections": [
#     {
#       "id": "egresspolicyguard",
#       "name": "EgressPolicyGuard",
#       "anchor": "class-egresspolicyguard",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Egress policy guard.

Decides whether a relayed call may leave for the requested host.  In
unrestricted (development) mode every destination is allowed.  In restricted
mode the literal hostname string from the parsed URL is compared against a
fixed denylist:

- exact matches: ``localhost``, ``127.0.0.1``, ``0.0.0.0``, ``::1``
- prefix matches: ``10.``, ``192.168.``, ``172.16.`` through ``172.31.``

Known gap: this is a textual prefix match, not an address-range check.  It
performs no DNS resolution, so a public name resolving to a private address
passes, as do DNS-rebinding tricks and alternative literal encodings
(``2130706433``, ``0x7f.1``, ``::ffff:127.0.0.1``, ``127.1``).  Changing that is
a policy decision; keep the matching textual.
"""

from __future__ import annotations

import logging
from typing import Tuple

import httpx

from RequestRelay.errors import ErrorCode, PolicyError
from RequestRelay.proxy.metrics import record_egress
from RequestRelay.proxy.types import EgressDecision

logger = logging.getLogger(__name__)

FORBIDDEN_DESTINATION_MESSAGE = (
    "Requests to internal or loopback addresses are forbidden in restricted mode"
)

#: Hostnames denied only on exact match
DENIED_EXACT_HOSTS: Tuple[str, ...] = ("localhost", "127.0.0.1", "0.0.0.0", "::1")

#: Hostname prefixes denied (RFC 1918 ranges as literal dotted prefixes)
DENIED_HOST_PREFIXES: Tuple[str, ...] = (
    "10.",
    "192.168.",
    *(f"172.{octet}." for octet in range(16, 32)),
)


class EgressPolicyGuard:
    """Hostname denylist applied when egress is restricted.

    The restricted flag is fixed at construction so the guard never consults
    process state while handling a call.

    Example:
        >>> EgressPolicyGuard(restricted=True).evaluate("10.0.0.5").allowed
        False
        >>> EgressPolicyGuard(restricted=False).evaluate("10.0.0.5").allowed
        True
    """

    def __init__(self, restricted: bool) -> None:
        self.restricted = bool(restricted)

    def evaluate(self, hostname: str) -> EgressDecision:
        """Return the decision for ``hostname`` without raising."""
        if not self.restricted:
            return EgressDecision(allowed=True)

        host = hostname.strip().lower()
        if host in DENIED_EXACT_HOSTS:
            return EgressDecision(allowed=False, reason=FORBIDDEN_DESTINATION_MESSAGE)
        for prefix in DENIED_HOST_PREFIXES:
            if host.startswith(prefix):
                return EgressDecision(allowed=False, reason=FORBIDDEN_DESTINATION_MESSAGE)
        return EgressDecision(allowed=True)

    def check(self, url: str) -> EgressDecision:
        """Evaluate the host of ``url`` and raise on a deny.

        Raises:
            PolicyError: If the destination is forbidden (HTTP 403).
        """
        hostname = httpx.URL(url).host
        decision = self.evaluate(hostname)
        record_egress(decision.allowed)
        if not decision.allowed:
            logger.warning(
                "Egress denied",
                extra={"stage": "egress", "extra_fields": {"host": hostname}},
            )
            raise PolicyError(
                decision.reason or FORBIDDEN_DESTINATION_MESSAGE,
                code=ErrorCode.E_PRIVATE_NET,
                details={"host": hostname},
            )
        return decision

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(restricted={self.restricted})"


__all__ = [
    "EgressPolicyGuard",
    "DENIED_EXACT_HOSTS",
    "DENIED_HOST_PREFIXES",
    "FORBIDDEN_DESTINATION_MESSAGE",
]
