"""
=============================================================================
DEMO ENTRY POINT
=============================================================================

    python -m httpkit
    python -m httpkit --port 3000
    python -m httpkit --host 0.0.0.0 --log-level DEBUG
    HTTP_PORT=3000 python -m httpkit

Wires the whole stack together the way an application would:

    GracefulRunner
      └─ HTTPServer
           └─ log_entry_recorder
                └─ cors
                     └─ ServeMux(middleware=log_and_error_handling())

Endpoints:

    GET  /system/info          application info
    GET  /system/health        health status
    GET  /echo/:name           echo a path parameter
    POST /echo                 echo a JSON body (400 on bad JSON)
    GET  /files/*filepath      echo a catch-all parameter

=============================================================================
"""

import argparse
import sys
import time
from typing import List, Optional

from . import __version__
from .config import ServerConfig, setup_logging
from .errors import RunnerError
from .handler import NetHandler
from .http.request import HTTPRequest
from .http.response import ResponseWriter, write_json
from .middleware import CORSConfig, cors, log_and_error_handling, reduce_net_middleware
from .mux import Route, ServeMux
from .recorder import log_entry_recorder
from .runner import GracefulRunner
from .server import HTTPServer


_STARTED_AT = time.time()


def system_routes(name: str) -> List[Route]:
    """System info and health routes."""

    def info(w: ResponseWriter, r: HTTPRequest) -> None:
        write_json(w, {"name": name, "version": __version__,
                       "uptime_seconds": round(time.time() - _STARTED_AT, 3)})

    def health(w: ResponseWriter, r: HTTPRequest) -> None:
        write_json(w, [{"name": "HTTP Server", "status": "healthy"}])

    return [
        Route("GET", "/system/info", info),
        Route("GET", "/system/health", health),
    ]


def build_app(config: ServerConfig, cors_config: Optional[CORSConfig] = None) -> NetHandler:
    """Build the demo handler: net middleware around a ServeMux."""
    mux = ServeMux(middleware=log_and_error_handling(log_format=config.log_format))

    for route in system_routes(config.server_name):
        mux.route(route)

    @mux.get("/echo/:name")
    def echo_name(w: ResponseWriter, r: HTTPRequest) -> None:
        write_json(w, {"name": r.path_params.by_name("name")})

    @mux.post("/echo")
    def echo_body(w: ResponseWriter, r: HTTPRequest) -> None:
        write_json(w, {"echo": r.read_json()}, 201)

    @mux.get("/files/*filepath")
    def files(w: ResponseWriter, r: HTTPRequest) -> None:
        write_json(w, {"filepath": r.path_params.by_name("filepath")})

    return reduce_net_middleware(log_entry_recorder, cors(cors_config))(mux)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    env = ServerConfig.from_env()

    parser = argparse.ArgumentParser(
        prog="python -m httpkit",
        description="Demo server for the httpkit toolkit",
    )
    parser.add_argument("--host", "-H", default=env.host,
                        help=f"Host to bind to (default: {env.host})")
    parser.add_argument("--port", "-p", type=int, default=env.port,
                        help=f"Port to listen on (default: {env.port})")
    parser.add_argument("--workers", "-w", type=int, default=env.max_workers,
                        help=f"Maximum worker threads (default: {env.max_workers})")
    parser.add_argument("--log-level", "-l", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        default=env.log_level.upper(), help="Logging level")
    parser.add_argument("--log-format", choices=["text", "json"], default=env.log_format,
                        help="Access log format")
    parser.add_argument("--shutdown-timeout", type=float, default=env.shutdown_timeout,
                        help="Seconds to wait for in-flight requests on shutdown")
    parser.add_argument("--version", "-v", action="version", version=f"httpkit {__version__}")
    args = parser.parse_args(argv)

    config = ServerConfig(
        host=args.host,
        port=args.port,
        min_workers=min(env.min_workers, args.workers),
        max_workers=args.workers,
        timeout=env.timeout,
        shutdown_timeout=args.shutdown_timeout,
        log_level=args.log_level,
        log_format=args.log_format,
    )
    try:
        config.validate()
    except ValueError as e:
        parser.error(str(e))

    setup_logging(config)

    server = HTTPServer(build_app(config), config)
    runner = GracefulRunner(server, wait_timeout=config.shutdown_timeout)
    try:
        runner.listen_and_serve()
    except RunnerError as e:
        print(f"error: {e}: {e.__cause__}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
