"""Create the component library database tables."""

import argparse
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).resolve().parents[1]))

from component_library import init_component_library_db, list_components
from core.config import load_config
from core.observability.logging import configure_logging


def main() -> None:
    config = load_config()
    parser = argparse.ArgumentParser(description="Initialize the component library database")
    parser.add_argument("--db", type=Path, default=config.db_path, help="SQLite database path")
    args = parser.parse_args()

    configure_logging(level=config.log_level, json_format=config.log_json)
    init_component_library_db(args.db)

    count = len(list_components(args.db))
    print(f"Component library ready at {args.db} ({count} component(s))")


if __name__ == "__main__":
    main()
