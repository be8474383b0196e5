"""Trusted-subnet gate for internal endpoints.

The client address is taken from, in order: the first ``X-Forwarded-For``
entry, ``X-Real-IP``, the transport peer.
"""

import ipaddress
from collections.abc import Mapping

from shortener.exceptions import ForbiddenError, InternalError

__all__ = ["TrustedSubnet", "client_ip_from", "parse_grpc_peer"]


def client_ip_from(headers: Mapping[str, str], peer: str | None) -> str | None:
    """Pick the client address; ``headers`` keys must be lower-case."""
    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return peer


def parse_grpc_peer(peer: str | None) -> str | None:
    """``ipv4:127.0.0.1:5000`` / ``ipv6:[::1]:5000`` -> bare address."""
    if not peer:
        return None
    kind, _, rest = peer.partition(":")
    if kind == "ipv4":
        return rest.rsplit(":", 1)[0]
    if kind == "ipv6":
        host = rest.rsplit(":", 1)[0] if rest.startswith("[") else rest
        return host.strip("[]")
    return None


class TrustedSubnet:
    def __init__(self, cidr: str, deny_if_not_configured: bool = True) -> None:
        self._cidr = cidr.strip()
        self._deny_if_not_configured = deny_if_not_configured
        self._network: ipaddress.IPv4Network | ipaddress.IPv6Network | None = None
        self._error: str | None = None
        if self._cidr:
            try:
                self._network = ipaddress.ip_network(self._cidr, strict=False)
            except ValueError as exc:
                self._error = f"Invalid trusted subnet '{self._cidr}': {exc}"

    @property
    def configured(self) -> bool:
        return bool(self._cidr)

    def check(self, client_ip: str | None) -> None:
        """Raise unless ``client_ip`` belongs to the trusted subnet.

        Raises:
            InternalError: the configured CIDR does not parse.
            ForbiddenError: the address is missing, unparsable or outside the subnet,
                or no subnet is configured and unconfigured access is denied.
        """
        if self._error is not None:
            raise InternalError(self._error)
        if self._network is None:
            if self._deny_if_not_configured:
                raise ForbiddenError("Trusted subnet is not configured")
            return
        if not client_ip:
            raise ForbiddenError("Client address is unknown")
        try:
            address = ipaddress.ip_address(client_ip)
        except ValueError as exc:
            raise ForbiddenError(f"Client address '{client_ip}' is not an IP address") from exc
        if address not in self._network:
            raise ForbiddenError(f"Client address {address} is outside the trusted subnet")
