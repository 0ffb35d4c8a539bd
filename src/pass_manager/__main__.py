# Main Entry Point - local vault API server
#
# python -m pass_manager [--host HOST] [--port PORT]
# Prints the session token the UI must send as X-Session-Token.

import argparse
import sys

import uvicorn

from .core import AppConfig, configure_audit_logger


def main(argv=None):
    """Parse arguments, configure logging and run the API with uvicorn."""
    try:
        config = AppConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    parser = argparse.ArgumentParser(
        prog="pass-manager",
        description="Pass Manager - local encrypted password vault API",
    )
    parser.add_argument(
        "--host",
        default=config.host,
        help=f"Bind address (default: {config.host})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=config.port,
        help=f"Port (default: {config.port})"
    )
    args = parser.parse_args(argv)

    configure_audit_logger(config.audit_log_dir)

    from .api.main import create_app
    from .api.security import initialize_session_token

    app = create_app(config=config)
    token = initialize_session_token()

    print(f"Pass Manager API on http://{args.host}:{args.port}")
    print(f"Session token: {token}")

    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
