"""Command line entry point: echo server, ping probe and health probe.

Usage examples:
  - echoskew serve --port 8079
  - echoskew ping 10.0.0.5:8079 -n 100 --payload hello
  - echoskew health 10.0.0.5 -n 10 --service ping

Settings come from ECHOSKEW_* environment variables (and .env); anything
given on the command line wins.
"""

from __future__ import annotations

import argparse
import asyncio
import ssl
import sys
from typing import Any, Dict, List, Optional, TextIO

from echoskew.config.settings import Mode, Settings
from echoskew.errors import ConnectError
from echoskew.probe.estimator import run_ping
from echoskew.probe.health import run_health
from echoskew.server.rpc import RpcServer
from echoskew.stats.histogram import Histogram
from echoskew.transport import tls
from echoskew.transport.address import DEFAULT_PORT, parse_address, split_listen_address
from echoskew.transport.channel import RpcChannel
from echoskew.utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def skew_histogram() -> Histogram:
    return Histogram(offset=-10, divider=2)


def rtt_histogram() -> Histogram:
    return Histogram(offset=0, divider=10)


def _client_ssl(settings: Settings) -> Optional[ssl.SSLContext]:
    if not settings.TLS:
        return None
    return tls.client_context(settings.CA_FILE)


def _server_ssl(settings: Settings) -> Optional[ssl.SSLContext]:
    if not settings.TLS:
        return None
    if not settings.CERT_FILE or not settings.KEY_FILE:
        raise ValueError("TLS server needs both a certificate and a key file")
    return tls.server_context(settings.CERT_FILE, settings.KEY_FILE)


async def _open_channel(settings: Settings) -> RpcChannel:
    try:
        ssl_context = _client_ssl(settings)
    except OSError as e:
        # missing or unreadable CA bundle
        raise ConnectError(settings.HOST, settings.PORT, e) from e
    channel = RpcChannel(settings.HOST, settings.PORT, ssl_context=ssl_context,
                         connect_timeout=settings.CONNECT_TIMEOUT)
    return await channel.connect()


async def serve(settings: Settings) -> None:
    host, port = split_listen_address(settings.LISTEN)
    server = RpcServer(host, port, ssl_context=_server_ssl(settings))
    await server.start()
    print(f"echoskew ping server listening on port {host}:{server.bound_port}", flush=True)
    try:
        await server.serve_forever()
    finally:
        await server.stop()


async def ping_client(settings: Settings, out: TextIO = sys.stdout) -> int:
    try:
        channel = await _open_channel(settings)
    except ConnectError as e:
        logger.error(f"Error: {e}")
        return 1
    skew_hist = skew_histogram()
    rtt_hist = rtt_histogram()
    try:
        result = await run_ping(channel, settings.COUNT, settings.PAYLOAD,
                                rtt_sink=rtt_hist, skew_sink=skew_hist)
    finally:
        await channel.close()
    out.write(skew_hist.report("Clock skew histogram usec", settings.PERCENTILES))
    out.write(rtt_hist.report("RTT histogram usec", settings.PERCENTILES))
    if result.violations:
        out.write(f"Protocol violations: {len(result.violations)}\n")
    if not result.ok:
        logger.error(f"Ping error from {result.error.call} at iteration {result.error.iteration}: "
                     f"{result.error.message}")
        return 1
    return 0


async def health_client(settings: Settings, out: TextIO = sys.stdout) -> int:
    try:
        channel = await _open_channel(settings)
    except ConnectError as e:
        logger.error(f"Error: {e}")
        return 1
    rtt_hist = rtt_histogram()
    try:
        result = await run_health(channel, settings.COUNT, settings.HEALTH_SERVICE, rtt_sink=rtt_hist)
    finally:
        await channel.close()
    out.write(rtt_hist.report("RTT histogram usec", settings.PERCENTILES))
    out.write(f"Statuses {dict(result.statuses)}\n")
    if not result.ok:
        logger.error(f"Health check error at iteration {result.error.iteration}: {result.error.message}")
        return 1
    return 0


def run(settings: Settings) -> int:
    """Run the configured mode to completion and return the exit status."""
    setup_logging(settings.LOG_LEVEL, component=settings.MODE.value, log_path=settings.LOG_PATH)
    if settings.MODE is Mode.SERVE:
        try:
            asyncio.run(serve(settings))
        except KeyboardInterrupt:
            pass
        except (OSError, ValueError, ssl.SSLError) as e:
            logger.error(f"failed to start server: {e}")
            return 1
        return 0
    if settings.MODE is Mode.HEALTH:
        return asyncio.run(health_client(settings))
    return asyncio.run(ping_client(settings))


def _percentiles(value: str) -> List[float]:
    try:
        return [float(p) for p in value.split(",") if p.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid percentile list {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", dest="LOG_LEVEL", help="DEBUG, INFO, WARNING, ERROR")
    common.add_argument("--log-path", dest="LOG_PATH", help="write logs to this file instead of stderr")
    common.add_argument("--tls", dest="TLS", action="store_const", const=True, help="use TLS")
    common.add_argument("--cert", dest="CERT_FILE", help="server certificate (serve --tls)")
    common.add_argument("--key", dest="KEY_FILE", help="server private key (serve --tls)")
    common.add_argument("--ca", dest="CA_FILE", help="CA bundle to verify the server (clients --tls)")

    client = argparse.ArgumentParser(add_help=False, parents=[common])
    client.add_argument("target", help="host, host:port or ip:port of the echo server")
    client.add_argument("-n", "--count", dest="COUNT", type=int,
                        help="number of iterations (values < 1 mean 1)")
    client.add_argument("-p", "--percentiles", dest="PERCENTILES", type=_percentiles,
                        help="comma separated percentiles to report, e.g. 50,90,99")
    client.add_argument("--connect-timeout", dest="CONNECT_TIMEOUT", type=float)

    parser = argparse.ArgumentParser(prog="echoskew", description="Echo server and RTT/clock skew probe")
    sub = parser.add_subparsers(dest="mode", required=True)

    srv = sub.add_parser(Mode.SERVE.value, parents=[common], help="run the echo server")
    srv.add_argument("--port", dest="LISTEN", help=f"port or host:port to listen on (default :{DEFAULT_PORT})")

    ping = sub.add_parser(Mode.PING.value, parents=[client], help="measure RTT and clock skew")
    ping.add_argument("--payload", dest="PAYLOAD", help="payload string to send along")

    health = sub.add_parser(Mode.HEALTH.value, parents=[client], help="time health checks")
    health.add_argument("--service", dest="HEALTH_SERVICE", help="service name to pass to health check")
    return parser


def settings_from_args(argv: Optional[List[str]] = None) -> Settings:
    args = vars(build_parser().parse_args(argv))
    overrides: Dict[str, Any] = {"MODE": Mode(args.pop("mode"))}
    target = args.pop("target", None)
    if target is not None:
        overrides["HOST"], overrides["PORT"] = parse_address(target)
    overrides.update({k: v for k, v in args.items() if v is not None})
    return Settings(**overrides)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        settings = settings_from_args(argv)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return run(settings)


if __name__ == "__main__":
    sys.exit(main())
