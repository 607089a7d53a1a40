import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from dnslib import AAAA, CLASS, CNAME, QTYPE, RCODE, RR, A, DNSRecord

from dohnet.dialer import Dialer
from dohnet.doh_resolver import DoHResolver
from dohnet.errors import DialError, ResolutionError
from dohnet.network import new_network


def dns_app(requests, rcode=RCODE.NOERROR, status=200, body=None):
    """DoH endpoint answering example.test via a CNAME"""

    async def dns_query(request):
        requests.append(request)
        if body is not None:
            return web.Response(status=status, body=body)

        query = DNSRecord.parse(await request.read())
        reply = query.reply()
        reply.header.rcode = rcode

        if rcode == RCODE.NOERROR:
            qname = query.q.qname
            reply.add_answer(RR(qname, QTYPE.CNAME, rdata=CNAME('edge.example.test')))
            if query.q.qtype == QTYPE.A:
                reply.add_answer(RR('edge.example.test', QTYPE.A, rdata=A('192.0.2.10')))
                reply.add_answer(RR('edge.example.test', QTYPE.A, rdata=A('192.0.2.11')))
            elif query.q.qtype == QTYPE.AAAA:
                reply.add_answer(RR('edge.example.test', QTYPE.AAAA, rdata=AAAA('2001:db8:0:0::10')))

        return web.Response(status=status, body=reply.pack(), content_type='application/dns-message')

    app = web.Application()
    app.router.add_post('/dns-query', dns_query)
    return app


def resolver_for(server):
    resolver = DoHResolver('127.0.0.1', aiohttp.ClientSession)
    resolver.url = str(server.make_url('/dns-query'))
    return resolver


@pytest.mark.asyncio
async def test_lookup_a_and_aaaa():
    requests = []

    async with TestServer(dns_app(requests)) as server:
        resolver = resolver_for(server)
        try:
            assert await resolver.lookup_a('example.test') == ['192.0.2.10', '192.0.2.11']
            assert await resolver.lookup_aaaa('example.test') == ['2001:db8::10']
        finally:
            await resolver.close()

    assert requests[0].headers['Content-Type'] == 'application/dns-message'
    assert requests[0].headers['Accept'] == 'application/dns-message'


@pytest.mark.asyncio
async def test_lookup_sends_question():
    questions = []

    async def dns_query(request):
        query = DNSRecord.parse(await request.read())
        questions.append(query.q)
        return web.Response(body=query.reply().pack())

    app = web.Application()
    app.router.add_post('/dns-query', dns_query)

    async with TestServer(app) as server:
        resolver = resolver_for(server)
        try:
            assert await resolver.lookup_aaaa('example.test') == []
        finally:
            await resolver.close()

    assert str(questions[0].qname) == 'example.test.'
    assert questions[0].qtype == QTYPE.AAAA
    assert questions[0].qclass == CLASS.IN


@pytest.mark.asyncio
async def test_lookup_nxdomain():
    async with TestServer(dns_app([], rcode=RCODE.NXDOMAIN)) as server:
        resolver = resolver_for(server)
        try:
            with pytest.raises(ResolutionError):
                await resolver.lookup_a('missing.example.test')
        finally:
            await resolver.close()


@pytest.mark.asyncio
async def test_lookup_http_error():
    async with TestServer(dns_app([], status=502, body=b'bad gateway')) as server:
        resolver = resolver_for(server)
        try:
            with pytest.raises(ResolutionError):
                await resolver.lookup_a('example.test')
        finally:
            await resolver.close()


@pytest.mark.asyncio
async def test_lookup_malformed_answer():
    async with TestServer(dns_app([], body=b'\x00\x01garbage')) as server:
        resolver = resolver_for(server)
        try:
            with pytest.raises(ResolutionError):
                await resolver.lookup_a('example.test')
        finally:
            await resolver.close()


@pytest.mark.asyncio
async def test_session_is_lazy_and_closed():
    created = []

    def factory():
        created.append(aiohttp.ClientSession())
        return created[-1]

    resolver = DoHResolver('127.0.0.1', factory)
    assert created == []

    async with TestServer(dns_app([])) as server:
        resolver.url = str(server.make_url('/dns-query'))
        await resolver.lookup_a('example.test')
        await resolver.lookup_a('example.test')

    assert len(created) == 1

    await resolver.close()
    assert created[0].closed
    assert resolver.session is None


@pytest.mark.asyncio
async def test_network_resolves_through_doh():
    requests = []

    async with TestServer(dns_app(requests)) as server:
        network = new_network(Dialer(), 'agent/1.0', '127.0.0.1', 5)
        network.doh.url = str(server.make_url('/dns-query'))

        async with network:
            ips = await network.resolve('tcp', 'example.test')

    assert sorted(ips) == ['192.0.2.10', '192.0.2.11', '2001:db8::10']
    assert len(requests) == 2
    assert {r.headers['User-Agent'] for r in requests} == {'agent/1.0'}


@pytest.mark.asyncio
@pytest.mark.parametrize('hostname', ['a' * 64 + '.example.test', 'b\udcff.example.test'])
async def test_lookup_unencodable_hostname(hostname):
    resolver = DoHResolver('127.0.0.1', aiohttp.ClientSession)
    try:
        with pytest.raises(ResolutionError):
            await resolver.lookup_a(hostname)
    finally:
        await resolver.close()


@pytest.mark.asyncio
@pytest.mark.parametrize('hostname', ['a' * 64 + '.example.test', 'b\udcff.example.test'])
async def test_dial_unencodable_hostname(hostname):
    network = new_network(Dialer(), 'agent', '127.0.0.1', 5)

    async with network:
        with pytest.raises(DialError) as excinfo:
            await network.dial('tcp', f'{hostname}:80')

    assert isinstance(excinfo.value.__cause__, ResolutionError)


@pytest.mark.asyncio
async def test_bootstrap_session_uses_dialer_sockets():
    class RecordingDialer(Dialer):
        def __init__(self):
            super().__init__()
            self.sockets = []

        def make_socket(self, addr_info):
            self.sockets.append(addr_info[4][0])
            return super().make_socket(addr_info)

    dialer = RecordingDialer()

    async with TestServer(dns_app([])) as server:
        network = new_network(dialer, 'agent', '127.0.0.1', 5)
        network.doh.url = str(server.make_url('/dns-query'))

        async with network:
            await network.resolve('tcp4', 'example.test')

    assert dialer.sockets == ['127.0.0.1']
