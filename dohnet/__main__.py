import argparse
import asyncio
import logging
import os
import sys

import aiohttp

# Allow running as "python dohnet/" by adding parent to path
if __package__ in (None, '') and not hasattr(sys, "frozen"):
    path = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    sys.path.insert(0, path)

from dohnet.dialer import FAMILIES, Dialer
from dohnet.errors import ConfigError
from dohnet.network import DEFAULT_DOH_HOSTNAME, DEFAULT_USER_AGENT, new_network


def build_parser():
    parser = argparse.ArgumentParser(prog='dohnet', description='Resolve and connect without the system resolver')
    parser.add_argument('--doh', default=DEFAULT_DOH_HOSTNAME, help='IP address of the DNS-over-HTTPS server')
    parser.add_argument('--user-agent', default=DEFAULT_USER_AGENT)
    parser.add_argument('--timeout', type=float, default=0, help='HTTP timeout in seconds, 0 for the default')
    parser.add_argument('-v', '--verbose', action='store_true')

    commands = parser.add_subparsers(dest='command', required=True)

    resolve = commands.add_parser('resolve', help='print the addresses of a hostname')
    resolve.add_argument('host')
    resolve.add_argument('--protocol', choices=sorted(FAMILIES), default='tcp')

    connect = commands.add_parser('connect', help='open a TCP connection to host:port')
    connect.add_argument('address')
    connect.add_argument('--protocol', choices=sorted(FAMILIES), default='tcp')

    fetch = commands.add_parser('fetch', help='GET an URL')
    fetch.add_argument('url')

    return parser


async def run(network, args):
    async with network:
        if args.command == 'resolve':
            for ip in await network.resolve(args.protocol, args.host):
                print(ip)

        elif args.command == 'connect':
            _, writer = await network.dial(args.protocol, args.address)
            print(writer.get_extra_info('peername')[0])
            writer.close()
            await writer.wait_closed()

        elif args.command == 'fetch':
            async with network.make_http_client() as session:
                async with session.get(args.url) as resp:
                    print(resp.status, resp.reason)
                    print(await resp.text())


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(name)s %(levelname)s %(message)s',
    )

    try:
        network = new_network(Dialer(), args.user_agent, args.doh, args.timeout)
    except ConfigError as e:
        parser.error(str(e))

    try:
        asyncio.run(run(network, args))
    except (OSError, aiohttp.ClientError) as e:
        print(f"{args.command} failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
