"""CLI entry point for the Tuttiud onboarding API server."""

import argparse
import os


def main(argv: list[str] | None = None) -> None:
    """Start the gateway under uvicorn."""
    parser = argparse.ArgumentParser(
        prog="tuttiud-server",
        description="Tuttiud onboarding API server: setup status, credential storage and diagnostics",
    )
    parser.add_argument("--host", default=os.environ.get("TUTTIUD_HOST", "0.0.0.0"), help="Bind host")
    parser.add_argument("--port", type=int, default=int(os.environ.get("TUTTIUD_PORT", "8080")), help="Bind port")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Override TUTTIUD_LOG_LEVEL")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite control store, console logs",
    )
    args = parser.parse_args(argv)

    # Settings are read when tuttiud.main is imported, so the environment is set first
    if args.local:
        os.environ["TUTTIUD_LOCAL_MODE"] = "1"
        os.environ["TUTTIUD_LOCAL"] = "1"
    if args.log_level:
        os.environ["TUTTIUD_LOG_LEVEL"] = args.log_level

    import uvicorn

    uvicorn.run("tuttiud.main:app", host=args.host, port=args.port, log_level=args.log_level or "info")


if __name__ == "__main__":
    main()
