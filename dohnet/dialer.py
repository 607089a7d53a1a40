import asyncio
import ipaddress
import logging
import socket

import aiohttp

logger = logging.getLogger("Dialer")

DEFAULT_TIMEOUT = 10
DEFAULT_BUFFER_SIZE = 16 * 1024

FAMILIES = {
    'tcp': socket.AF_UNSPEC,
    'tcp4': socket.AF_INET,
    'tcp6': socket.AF_INET6,
}


def split_host_port(address):
    """Split 'host:port' or '[v6]:port' into (host, port)"""
    host, sep, port = address.rpartition(':')
    if not sep or not port:
        raise ValueError(f"missing port in address {address!r}")

    if host.startswith('['):
        if not host.endswith(']'):
            raise ValueError(f"missing ']' in address {address!r}")
        host = host[1:-1]
    elif ':' in host:
        raise ValueError(f"too many colons in address {address!r}")

    return host, port


def join_host_port(host, port):
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def is_ip_address(value):
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class Dialer:
    """Opens raw TCP connections, one address at a time.

    Every socket comes from make_socket(), both for the streams returned by
    dial_context() and for the aiohttp connectors built by connector().
    """

    def __init__(self, timeout=DEFAULT_TIMEOUT, buffer_size=DEFAULT_BUFFER_SIZE, ttl=0):
        self.timeout = timeout
        self.buffer_size = buffer_size
        self.ttl = ttl

    def make_socket(self, addr_info):
        """Unconnected socket for a getaddrinfo() entry"""
        family, type_, proto, _, _ = addr_info
        sock = socket.socket(family, type_, proto)

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, self.buffer_size)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, self.buffer_size)

        if self.ttl > 0:
            try:
                if family == socket.AF_INET:
                    sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, self.ttl)
                elif family == socket.AF_INET6:
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_UNICAST_HOPS, self.ttl)
            except OSError as e:
                # Log but do not fail the connection
                logger.warning(f"Failed to set TTL (family={family}): {e}")

        return sock

    async def dial_context(self, protocol, address):
        family = FAMILIES.get(protocol)
        if family is None:
            raise ValueError(f"unknown network {protocol}")

        host, port = split_host_port(address)
        loop = asyncio.get_running_loop()

        infos = await loop.getaddrinfo(host, int(port), family=family, type=socket.SOCK_STREAM)
        addr_info = infos[0]

        sock = self.make_socket(addr_info)
        sock.setblocking(False)
        try:
            await asyncio.wait_for(loop.sock_connect(sock, addr_info[4]), self.timeout)
        except BaseException:
            sock.close()
            raise

        return await asyncio.open_connection(sock=sock)

    def connector(self, resolver):
        """aiohttp connector that walks resolved addresses sequentially"""
        return aiohttp.TCPConnector(
            resolver=resolver,
            use_dns_cache=False,
            happy_eyeballs_delay=None,
            socket_factory=self.make_socket,
        )
