"""CLI entry-point for AccessWatch.

Usage examples
--------------
# Replay a recorded event file and write alerts.jsonl / metrics.json:
accesswatch replay --input data/sample_events.csv --out-dir out

# Same, with detection settings from a config file:
accesswatch replay --input data/sample_events.csv --config config/accesswatch.yaml

# Serve the REST API (address from api.addr unless overridden):
accesswatch serve --config config/accesswatch.yaml --port 9000
"""

from __future__ import annotations

import argparse
import logging
import sys

from accesswatch import __version__
from accesswatch.analyzer.pipeline import AccessEngine, replay
from accesswatch.shared.errors import ConfigInvalidError
from accesswatch.shared.logger import setup_logging
from accesswatch.shared.settings import load_settings

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="accesswatch",
        description="AccessWatch — access-control anomaly detection for credential readers",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command", required=True)

    rp = sub.add_parser("replay", help="Run an event file through a fresh engine")
    rp.add_argument(
        "--input",
        required=True,
        help="Input file (CSV or JSONL). Format auto-detected by extension.",
    )
    rp.add_argument(
        "--out-dir",
        default="out",
        help="Output directory for alerts.jsonl and metrics.json. Default: out/",
    )

    sp = sub.add_parser("serve", help="Start the REST API")
    sp.add_argument("--host", default=None, help="Bind host (overrides api.addr)")
    sp.add_argument("--port", type=int, default=None, help="Bind port (overrides api.addr)")

    for sp_ in (rp, sp):
        sp_.add_argument(
            "--config",
            default=None,
            help="YAML config file. Built-in defaults when omitted.",
        )
        sp_.add_argument(
            "--log-level",
            default=None,
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Logging level. Default: log_level from config, else INFO",
        )
    return p


def _serve(args: argparse.Namespace, engine: AccessEngine) -> int:
    import uvicorn

    from accesswatch.api.server import create_app

    api = engine.settings.api
    if not api.enabled and args.host is None and args.port is None:
        log.error("api.enabled is false in %s; nothing to serve", engine.settings.config_path)
        return 2
    host = args.host or api.host
    port = args.port or api.port
    log.info("Serving AccessWatch API on %s:%d", host, port)
    uvicorn.run(create_app(engine), host=host, port=port, log_config=None)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or "INFO")

    try:
        settings = load_settings(args.config)
    except (ConfigInvalidError, FileNotFoundError) as exc:
        log.error("Cannot load config: %s", exc)
        return 2
    if args.log_level is None:
        setup_logging(settings.log_level)

    if args.command == "replay":
        result = replay(args.input, settings=settings, out_dir=args.out_dir)
        print(
            f"events={result['events']} dropped={result['dropped']} "
            f"alerts={len(result['alerts'])} readers={len(result['metrics'])}"
        )
        return 0

    return _serve(args, AccessEngine(settings))


if __name__ == "__main__":
    sys.exit(main())
