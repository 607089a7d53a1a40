import asyncio
import functools
import logging
import random

import aiohttp

from .dialer import is_ip_address, join_host_port, split_host_port
from .doh_resolver import DoHResolver
from .errors import ConfigError, DialError, ResolutionError
from .http_client import LiteralResolver, NetworkResolver, make_http_client

logger = logging.getLogger("Network")

DEFAULT_HTTP_TIMEOUT = 10
DNS_TIMEOUT = 5
DEFAULT_DOH_HOSTNAME = '1.1.1.1'
DEFAULT_USER_AGENT = 'dohnet'


class Network:
    """Outbound connectivity that never asks the system resolver.

    Hostnames are resolved with DNS-over-HTTPS, the answers are shuffled and
    tried one by one with the dialer until a connection succeeds. HTTP
    clients built by make_http_client() go through the same path.
    """

    def __init__(self, dialer, doh, user_agent, http_timeout):
        self.dialer = dialer
        self.doh = doh
        self.user_agent = user_agent
        self.http_timeout = http_timeout

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        await self.doh.close()

    async def dial(self, protocol, address):
        return await self.dial_context(protocol, address)

    async def dial_context(self, protocol, address, timeout=None):
        """Connect to address, bounded as a whole (resolution included) by timeout"""
        try:
            return await asyncio.wait_for(self._dial(protocol, address), timeout)
        except asyncio.TimeoutError as e:
            raise DialError(f"cannot dial to {protocol}:{address}: deadline exceeded") from e

    async def _dial(self, protocol, address):
        host, port = split_host_port(address)

        try:
            ips = await self.candidates(protocol, host)
        except ResolutionError as e:
            raise DialError(f"cannot resolve dns names: {e}") from e

        error = None
        for ip in ips:
            try:
                conn = await self.dialer.dial_context(protocol, join_host_port(ip, port))
            except (OSError, asyncio.TimeoutError) as e:
                logger.debug(f"dial {protocol}:{ip}:{port} failed: {e!r}")
                error = e
                continue

            logger.info(f"Connected {address} via {ip}")
            return conn

        raise DialError(f"cannot dial to {protocol}:{address}: {error}") from error

    async def candidates(self, protocol, host):
        """Resolved addresses for host in a uniformly random order"""
        ips = await self.resolve(protocol, host)

        if len(ips) > 1:
            random.shuffle(ips)

        return ips

    async def resolve(self, protocol, host):
        if is_ip_address(host):
            return [host]

        queries = []
        if protocol in ('tcp', 'tcp4'):
            queries.append(self._query('A', self.doh.lookup_a, host))
        if protocol in ('tcp', 'tcp6'):
            queries.append(self._query('AAAA', self.doh.lookup_aaaa, host))

        ips = []
        for found in await asyncio.gather(*queries):
            ips.extend(found)

        if not ips:
            raise ResolutionError(f"cannot find any ips for {protocol}:{host}")

        return ips

    async def _query(self, qtype, lookup, host):
        try:
            return await lookup(host)
        except (ResolutionError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"{qtype} lookup for {host} failed: {e!r}")
            return []

    def make_http_client(self, resolver=None):
        """aiohttp session stamped with our User-Agent.

        Hostnames go through DoH and failover unless another aiohttp
        resolver is given. Must be called with an event loop running.
        """
        if resolver is None:
            resolver = NetworkResolver(self)

        return make_http_client(self.dialer, self.user_agent, self.http_timeout, resolver)


def new_network(dialer, user_agent=DEFAULT_USER_AGENT,
                doh_hostname=DEFAULT_DOH_HOSTNAME, http_timeout=0):
    if http_timeout < 0:
        raise ConfigError(f"timeout should be positive number {http_timeout}")
    if http_timeout == 0:
        http_timeout = DEFAULT_HTTP_TIMEOUT

    if not is_ip_address(doh_hostname):
        raise ConfigError(f"hostname {doh_hostname} should be IP address")

    # resolver traffic is dialed directly, a hostname here would need DoH itself
    doh = DoHResolver(
        doh_hostname,
        functools.partial(make_http_client, dialer, user_agent, DNS_TIMEOUT, LiteralResolver()),
        dns_class='IN',
    )

    return Network(dialer, doh, user_agent, http_timeout)
