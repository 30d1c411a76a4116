from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# * Add project root to Python path for src imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from src.config.providers.dotenv_provider import parse_env_file  # noqa: E402
from src.infrastructure.logging.config import configure_logging  # noqa: E402


def load_env_file_to_environment(env_file: Path | None = None) -> None:
    """Export .env values into os.environ; variables already set win over the file."""
    env_file = env_file or Path(".env")
    if not env_file.is_file():
        return
    try:
        values = parse_env_file(env_file)
    except OSError as e:
        print(f"Warning: Failed to load {env_file}: {e}", file=sys.stderr)
        return
    for key, value in values.items():
        os.environ.setdefault(key, value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Backtest result cache CLI")
    parser.add_argument("--log-level", dest="log_level", default=None)
    parser.add_argument("--log-json", dest="log_json", action="store_true", default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Import and register command groups
    from cli.commands import cache, results

    cache.register(subparsers)
    results.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    load_env_file_to_environment()

    parser = build_parser()
    ns = parser.parse_args(argv)
    configure_logging(ns.log_level, use_json=ns.log_json)

    func = getattr(ns, "func", None)
    if callable(func):
        return int(func(ns) or 0)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
