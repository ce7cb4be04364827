"""
Network egress validation for user-supplied connection URIs.

Decides whether the proxy may dial the hosts named in a ``mongodb://`` or
``mongodb+srv://`` URI. Literal hosts are checked against a hostname
denylist and a set of blocked networks; names are resolved and every
resolved address is checked the same way. ``mongodb+srv`` seed hosts are
expanded through their SRV record and every target is checked.

This module never opens a database socket. Any failure (parse, resolution,
timeout) is a rejection.

Known limitation: the driver resolves hosts again when it dials, so a DNS
answer that changes between validation and dial is not caught here.
"""

import asyncio
import ipaddress
import logging
import re
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

import dns.asyncresolver
import dns.exception

from ..constants import (
    ALLOWED_URI_SCHEMES,
    BLOCKED_HOSTNAME_SUFFIXES,
    BLOCKED_HOSTNAMES,
    BLOCKED_NETWORKS,
    SRV_SERVICE_PREFIX,
)
from ..exceptions import EgressDeniedError, InvalidFormatError

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[list[str]]]

# Decision codes
INVALID_FORMAT = "invalid_format"
BLOCKED_SCHEME = "blocked_scheme"
BLOCKED_HOST = "blocked_host"
BLOCKED_NETWORK = "blocked_network"
UNRESOLVABLE = "unresolvable"

# Client-facing reasons
REASON_INVALID_FORMAT = "Invalid URI format"
REASON_BLOCKED_SCHEME = "Only MongoDB protocols are allowed"
REASON_BLOCKED_HOST = "Connection to internal hosts is not allowed"
REASON_BLOCKED_NETWORK = "Connection to private networks is not allowed"
REASON_UNRESOLVABLE = "Could not resolve database host"

DEFAULT_RESOLVE_TIMEOUT_SECONDS = 5.0

# Purely numeric hosts: decimal or hex parts, one to four of them.
_NUMERIC_HOST = re.compile(r"^(?:0x[0-9a-f]*|\d+)(?:\.(?:0x[0-9a-f]*|\d+)){0,3}\.?$", re.IGNORECASE)
_CANONICAL_IPV4 = re.compile(r"^(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(?:\.(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}$")
_HOST_CHARS = re.compile(r"^[a-z0-9._-]+$")

_BLOCKED_NETWORKS = tuple(ipaddress.ip_network(cidr) for cidr in BLOCKED_NETWORKS)
_NAT64_PREFIX = ipaddress.ip_network("64:ff9b::/96")


@dataclass(frozen=True)
class EgressDecision:
    """Outcome of an egress check. ``reason`` is safe to show to the client."""

    allowed: bool
    reason: str | None = None
    code: str | None = None
    host: str | None = None

    @classmethod
    def allow(cls) -> "EgressDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, code: str, host: str | None = None) -> "EgressDecision":
        return cls(allowed=False, reason=reason, code=code, host=host)


@dataclass(frozen=True)
class ParsedMongoURI:
    """The parts of a connection URI the proxy cares about."""

    scheme: str
    hosts: tuple[tuple[str, int | None], ...]
    username: str | None = None
    password: str | None = None
    database: str | None = None
    options: dict[str, str] = field(default_factory=dict)

    @property
    def is_srv(self) -> bool:
        return self.scheme == "mongodb+srv"


def parse_mongo_uri(uri: Any) -> ParsedMongoURI:
    """
    Parse a connection URI, including multi-host seed lists.

    Raises:
        InvalidFormatError: If the URI cannot be parsed
    """
    if not isinstance(uri, str) or not uri.strip():
        raise InvalidFormatError(REASON_INVALID_FORMAT)

    scheme, sep, rest = uri.strip().partition("://")
    if not sep or not scheme or not rest:
        raise InvalidFormatError(REASON_INVALID_FORMAT)
    scheme = scheme.lower()

    authority, slash, path = rest.partition("/")
    if not slash and "?" in authority:
        authority, _, query = authority.partition("?")
        path = f"?{query}"

    username = password = None
    if "@" in authority:
        userinfo, _, authority = authority.rpartition("@")
        user, has_password, secret = userinfo.partition(":")
        username = unquote(user)
        password = unquote(secret) if has_password else None

    if not authority:
        raise InvalidFormatError(REASON_INVALID_FORMAT)

    hosts = tuple(_parse_host(entry) for entry in authority.split(","))

    db_part, _, query = path.partition("?")
    database = unquote(db_part) or None
    options: dict[str, str] = {}
    for pair in filter(None, query.split("&")):
        key, _, value = pair.partition("=")
        options[unquote(key)] = unquote(value)

    return ParsedMongoURI(
        scheme=scheme,
        hosts=hosts,
        username=username,
        password=password,
        database=database,
        options=options,
    )


def _parse_host(entry: str) -> tuple[str, int | None]:
    entry = entry.strip()
    if not entry:
        raise InvalidFormatError(REASON_INVALID_FORMAT)

    if entry.startswith("["):
        host, bracket, remainder = entry[1:].partition("]")
        if not bracket or not host:
            raise InvalidFormatError(REASON_INVALID_FORMAT)
        if remainder and not remainder.startswith(":"):
            raise InvalidFormatError(REASON_INVALID_FORMAT)
        port_text = remainder[1:] if remainder else None
    else:
        if entry.count(":") > 1:
            # Unbracketed IPv6
            raise InvalidFormatError(REASON_INVALID_FORMAT)
        host, colon, port_text = entry.partition(":")
        if not colon:
            port_text = None
        if not host:
            raise InvalidFormatError(REASON_INVALID_FORMAT)

    port = None
    if port_text is not None:
        if not port_text.isdigit() or not 0 < int(port_text) < 65536:
            raise InvalidFormatError(REASON_INVALID_FORMAT)
        port = int(port_text)

    # Percent-encoded hosts and scope IDs are refused outright.
    if "%" in host:
        raise InvalidFormatError(REASON_INVALID_FORMAT)

    return normalize_host(host), port


def normalize_host(host: str) -> str:
    return host.strip().lower().rstrip(".")


def is_blocked_address(address: str | ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """
    True if ``address`` falls in a blocked network.

    IPv6 addresses that embed an IPv4 address (IPv4-mapped, 6to4 and NAT64)
    are judged by the embedded address.
    """
    addr = ipaddress.ip_address(address) if isinstance(address, str) else address
    if isinstance(addr, ipaddress.IPv6Address):
        embedded = _embedded_ipv4(addr)
        if embedded is not None and is_blocked_address(embedded):
            return True
    return any(addr.version == net.version and addr in net for net in _BLOCKED_NETWORKS)


def _embedded_ipv4(addr: ipaddress.IPv6Address) -> ipaddress.IPv4Address | None:
    if addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    if addr.sixtofour is not None:
        return addr.sixtofour
    if addr in _NAT64_PREFIX:
        return ipaddress.IPv4Address(int(addr) & 0xFFFFFFFF)
    return None


def _ip_literal(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def check_host(host: str) -> EgressDecision:
    """Static checks for a single normalized host (no resolution)."""
    if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_HOSTNAME_SUFFIXES):
        return EgressDecision.deny(REASON_BLOCKED_HOST, BLOCKED_HOST, host)

    if _NUMERIC_HOST.match(host) and not _CANONICAL_IPV4.match(host):
        # 127.1, 0x7f.0.0.1, 2130706433 and friends
        return EgressDecision.deny(REASON_BLOCKED_HOST, BLOCKED_HOST, host)

    literal = _ip_literal(host)
    if literal is not None:
        if is_blocked_address(literal):
            return EgressDecision.deny(REASON_BLOCKED_NETWORK, BLOCKED_NETWORK, host)
        return EgressDecision.allow()

    if not _HOST_CHARS.match(host):
        return EgressDecision.deny(REASON_INVALID_FORMAT, INVALID_FORMAT, host)
    return EgressDecision.allow()


async def system_resolver(host: str) -> list[str]:
    """Resolve ``host`` to its A/AAAA addresses with the system resolver."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


async def srv_resolver(host: str) -> list[str]:
    """Return the target hosts of the ``_mongodb._tcp`` SRV record for ``host``."""
    answer = await dns.asyncresolver.resolve(f"{SRV_SERVICE_PREFIX}{host}", "SRV")
    return [str(record.target).rstrip(".") for record in answer]


class EgressValidator:
    """
    Decides whether a connection URI may be dialled.

    Both resolvers are injectable so tests never touch the network.
    """

    def __init__(
        self,
        resolver: Resolver | None = None,
        srv_lookup: Resolver | None = None,
        resolve_timeout: float = DEFAULT_RESOLVE_TIMEOUT_SECONDS,
    ):
        self._resolver = resolver or system_resolver
        self._srv_lookup = srv_lookup or srv_resolver
        self._resolve_timeout = resolve_timeout

    def check_static(self, uri: Any) -> EgressDecision:
        """Parse and check the URI without any DNS resolution."""
        decision, _ = self._check_static(uri)
        return decision

    def _check_static(self, uri: Any) -> tuple[EgressDecision, ParsedMongoURI | None]:
        try:
            parsed = parse_mongo_uri(uri)
        except InvalidFormatError:
            return EgressDecision.deny(REASON_INVALID_FORMAT, INVALID_FORMAT), None

        if parsed.scheme not in ALLOWED_URI_SCHEMES:
            return EgressDecision.deny(REASON_BLOCKED_SCHEME, BLOCKED_SCHEME), None

        if parsed.is_srv:
            if len(parsed.hosts) != 1 or parsed.hosts[0][1] is not None:
                return EgressDecision.deny(REASON_INVALID_FORMAT, INVALID_FORMAT), None

        for host, _port in parsed.hosts:
            decision = check_host(host)
            if not decision.allowed:
                return decision, None

        if parsed.is_srv and _ip_literal(parsed.hosts[0][0]) is not None:
            return EgressDecision.deny(REASON_INVALID_FORMAT, INVALID_FORMAT), None

        return EgressDecision.allow(), parsed

    async def check(self, uri: Any) -> EgressDecision:
        """
        Full check: static rules, then resolution of every named host.

        For ``mongodb+srv`` the SRV targets replace the seed host, since the
        driver never connects to the seed host itself.
        """
        decision, parsed = self._check_static(uri)
        if not decision.allowed or parsed is None:
            self._log_denial(decision)
            return decision

        if parsed.is_srv:
            seed = parsed.hosts[0][0]
            try:
                targets = await asyncio.wait_for(self._srv_lookup(seed), self._resolve_timeout)
            except (dns.exception.DNSException, OSError, asyncio.TimeoutError) as e:
                logger.warning(f"SRV lookup failed for {seed}: {type(e).__name__}")
                decision = EgressDecision.deny(REASON_UNRESOLVABLE, UNRESOLVABLE, seed)
                self._log_denial(decision)
                return decision
            hosts = [normalize_host(t) for t in targets]
            if not hosts:
                decision = EgressDecision.deny(REASON_UNRESOLVABLE, UNRESOLVABLE, seed)
                self._log_denial(decision)
                return decision
            for host in hosts:
                decision = check_host(host)
                if not decision.allowed:
                    self._log_denial(decision)
                    return decision
        else:
            hosts = [host for host, _port in parsed.hosts]

        names = sorted({h for h in hosts if _ip_literal(h) is None})
        results = await asyncio.gather(*(self._resolve(name) for name in names))
        for result in results:
            if not result.allowed:
                self._log_denial(result)
                return result

        return EgressDecision.allow()

    async def _resolve(self, host: str) -> EgressDecision:
        try:
            addresses = await asyncio.wait_for(self._resolver(host), self._resolve_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Resolution failed for {host}: {type(e).__name__}")
            return EgressDecision.deny(REASON_UNRESOLVABLE, UNRESOLVABLE, host)

        if not addresses:
            return EgressDecision.deny(REASON_UNRESOLVABLE, UNRESOLVABLE, host)

        for address in addresses:
            try:
                blocked = is_blocked_address(address.split("%", 1)[0])
            except ValueError:
                return EgressDecision.deny(REASON_UNRESOLVABLE, UNRESOLVABLE, host)
            if blocked:
                return EgressDecision.deny(REASON_BLOCKED_NETWORK, BLOCKED_NETWORK, host)
        return EgressDecision.allow()

    async def ensure_allowed(self, uri: Any) -> None:
        """
        Raising form of ``check``.

        Raises:
            InvalidFormatError: If the URI is malformed
            EgressDeniedError: If any destination is blocked or unresolvable
        """
        decision = await self.check(uri)
        if decision.allowed:
            return
        if decision.code == INVALID_FORMAT:
            raise InvalidFormatError(decision.reason or REASON_INVALID_FORMAT)
        raise EgressDeniedError(decision.reason or REASON_BLOCKED_HOST, host=decision.host)

    @staticmethod
    def _log_denial(decision: EgressDecision) -> None:
        logger.warning(
            f"Egress denied: code={decision.code}"
            + (f", host={decision.host}" if decision.host else "")
        )
