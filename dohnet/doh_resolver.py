import ipaddress
import logging

from dnslib import QTYPE, RCODE, DNSRecord
from dnslib.dns import DNSError
from dnslib.label import DNSLabelError

from .dialer import join_host_port
from .errors import ResolutionError

logger = logging.getLogger("DoHResolver")


class DoHResolver:
    """DNS-over-HTTPS (RFC 8484) client for a single literal-IP endpoint"""

    HEADERS = {
        'accept': 'application/dns-message',
        'content-type': 'application/dns-message',
    }

    def __init__(self, host, session_factory, dns_class='IN'):
        self.host = host
        self.dns_class = dns_class
        self.url = f"https://{join_host_port(host, 443)}/dns-query"
        self.session_factory = session_factory
        self.session = None

    async def _ensure_session(self):
        if self.session is None:
            self.session = self.session_factory()
        return self.session

    async def lookup_a(self, hostname):
        return await self.lookup(hostname, 'A')

    async def lookup_aaaa(self, hostname):
        return await self.lookup(hostname, 'AAAA')

    async def lookup(self, hostname, qtype):
        """Query one record type for hostname, returns list of IP addresses"""
        session = await self._ensure_session()
        try:
            query = DNSRecord.question(hostname, qtype, self.dns_class).pack()
        except (DNSError, DNSLabelError, UnicodeError, ValueError) as e:
            raise ResolutionError(f"cannot query {hostname!r} {qtype}: {e}") from e

        async with session.post(self.url, data=query, headers=self.HEADERS) as resp:
            if resp.status != 200:
                raise ResolutionError(f"{self.url} answered {resp.status} for {hostname} {qtype}")
            payload = await resp.read()

        try:
            reply = DNSRecord.parse(payload)
        except DNSError as e:
            raise ResolutionError(f"malformed answer for {hostname} {qtype}: {e}") from e

        if reply.header.rcode != RCODE.NOERROR:
            raise ResolutionError(f"{hostname} {qtype}: rcode {reply.header.rcode}")

        wanted = getattr(QTYPE, qtype)
        ips = [str(ipaddress.ip_address(str(rr.rdata))) for rr in reply.rr if rr.rtype == wanted]
        logger.debug(f"{hostname} {qtype} -> {ips}")
        return ips

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None
