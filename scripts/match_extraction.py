"""Match an extraction JSON against the component library.

Prints the match decision for every extracted row. With --import, every
pending decision is resolved as create_new (or accept_match with
--accept-matches) and the batch is written to the library.
"""

import argparse
import asyncio
import json
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).resolve().parents[1]))

from component_library import SQLiteComponentRepository
from component_matcher import ComponentMatcher, MatchingConfig, OpenAISemanticMatcher, UserDecision, explain_decision
from core.config import load_config
from core.errors import ComponentLibraryError
from core.observability.logging import configure_logging
from core.storage.artifacts import ArtifactStore
from extraction import JsonFileExtractor
from library_import import ImportPipeline


async def run(args) -> int:
    config = load_config()
    configure_logging(level=config.log_level, json_format=config.log_json)

    repository = SQLiteComponentRepository(args.db or config.db_path)
    repository.init_db()

    semantic = None
    if config.openai_api_key and not args.no_semantic:
        semantic = OpenAISemanticMatcher(config.openai_api_key, model=config.semantic_match_model)
    matcher = ComponentMatcher(
        semantic_matcher=semantic,
        config=MatchingConfig(concurrency=config.match_concurrency),
    )

    pipeline = ImportPipeline(
        JsonFileExtractor(),
        matcher,
        repository,
        artifact_store=ArtifactStore(config.artifacts_dir),
        config=config,
    )

    result = pipeline.extract(args.extraction)
    for warning in result.warnings:
        print(f"  [{warning.severity.value}] {warning.message}")

    session = await pipeline.match()
    for candidate in session.state.candidates:
        print(f"{candidate.id}: {candidate.name} ({candidate.manufacturer_pn or '-'})")
        if candidate.match_decision is not None:
            print(f"    {explain_decision(candidate.match_decision, candidate)}")

    print(json.dumps(session.summary(), indent=2))

    if not args.do_import:
        return 0

    choice = UserDecision.ACCEPT_MATCH if args.accept_matches else UserDecision.CREATE_NEW
    for decision in session.get_pending_decisions():
        session.decide(decision.component_index, choice)

    import_result = pipeline.finalize()
    print(json.dumps(import_result.to_dict(), indent=2))
    return 1 if import_result.failures else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Match extracted quote rows against the component library")
    parser.add_argument("extraction", type=Path, help="Extraction JSON file")
    parser.add_argument("--db", type=Path, help="SQLite database path (default from config)")
    parser.add_argument("--no-semantic", action="store_true", help="Skip the semantic tier")
    parser.add_argument("--import", dest="do_import", action="store_true", help="Write the batch to the library")
    parser.add_argument("--accept-matches", action="store_true",
                        help="Resolve pending decisions as accept_match instead of create_new")
    args = parser.parse_args()

    try:
        code = asyncio.run(run(args))
    except ComponentLibraryError as e:
        print(f"Error: {e}")
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
