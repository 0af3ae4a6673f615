"""CLI entry point for the CAPA API server."""

import argparse
import os


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="capa-server",
        description="CAPA API server: nonconformity and corrective action lifecycle",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite database, console logs",
    )
    args = parser.parse_args(argv)

    if args.local:
        os.environ["CAPA_LOCAL_MODE"] = "1"

    import uvicorn

    uvicorn.run("capa.main:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
