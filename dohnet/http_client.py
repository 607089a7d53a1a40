import socket

import aiohttp
from aiohttp import hdrs
from aiohttp.abc import AbstractResolver

from .dialer import is_ip_address
from .errors import ResolutionError

# aiohttp connector family -> transport kind
PROTOCOLS = {
    socket.AF_INET: 'tcp4',
    socket.AF_INET6: 'tcp6',
}

NUMERIC_FLAGS = socket.AI_NUMERICHOST | socket.AI_NUMERICSERV


def address_info(hostname, ip, port):
    family = socket.AF_INET6 if ':' in ip else socket.AF_INET
    return {
        'hostname': hostname,
        'host': ip,
        'port': port,
        'family': family,
        'proto': 0,
        'flags': NUMERIC_FLAGS,
    }


class NetworkResolver(AbstractResolver):
    """aiohttp resolver answering with a Network's shuffled DoH candidates.

    The connector then tries the addresses in the given order, one at a time.
    """

    def __init__(self, network):
        self.network = network

    async def resolve(self, host, port=0, family=socket.AF_INET):
        protocol = PROTOCOLS.get(family, 'tcp')
        ips = await self.network.candidates(protocol, host)
        return [address_info(host, ip, port) for ip in ips]

    async def close(self):
        pass


class LiteralResolver(AbstractResolver):
    """Refuses anything that is not already an IP address"""

    async def resolve(self, host, port=0, family=socket.AF_INET):
        if not is_ip_address(host):
            raise ResolutionError(f"{host} is not an IP address")
        return [address_info(host, host, port)]

    async def close(self):
        pass


def stamped_request_class(user_agent):
    """ClientRequest that overwrites User-Agent right before it is sent.

    Set at send time so neither request headers nor per-request
    middlewares can change it.
    """

    class StampedRequest(aiohttp.ClientRequest):
        async def send(self, conn):
            self.headers[hdrs.USER_AGENT] = user_agent
            return await super().send(conn)

    return StampedRequest


def make_http_client(dialer, user_agent, timeout, resolver):
    return aiohttp.ClientSession(
        connector=dialer.connector(resolver),
        timeout=aiohttp.ClientTimeout(total=timeout, sock_connect=dialer.timeout),
        request_class=stamped_request_class(user_agent),
    )
