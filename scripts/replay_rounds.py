"""Replay a file of recorded rounds through a fresh predictor.

Usage:
    python scripts/replay_rounds.py rounds.json
    python scripts/replay_rounds.py rounds.json --strategy Value --follow-advice
    python scripts/replay_rounds.py rounds.json --db --output replay.json

By default the replay runs against an in-memory store and leaves the
configured database untouched. --db records into the configured database.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from race_predictor.backtest import load_rounds_file, replay_rounds
from race_predictor.config import configure_logging, get_settings
from race_predictor.memory import InMemoryBlobStore, SqlBlobStore
from race_predictor.models import init_db, make_engine, make_session_factory
from race_predictor.session import PredictorSession

logger = logging.getLogger(__name__)


async def main(args) -> None:
    rounds = load_rounds_file(Path(args.file))
    logger.info("Loaded %d rounds from %s", len(rounds), args.file)

    engine = None
    if args.db:
        engine = make_engine()
        await init_db(engine)
        store = SqlBlobStore(make_session_factory(engine))
    else:
        store = InMemoryBlobStore()

    try:
        session = PredictorSession(store, get_settings())
        await session.load()
        if args.strategy:
            result = session.select_strategy(args.strategy)
            if not result.is_valid:
                print(result.errors[0])
                return

        summary = await replay_rounds(rounds, session, follow_advice=args.follow_advice)
    finally:
        if engine is not None:
            await engine.dispose()

    m = summary.metrics
    print("\n" + "=" * 60)
    print("REPLAY RESULTS")
    print("=" * 60)
    print(f"Rounds recorded: {summary.rounds}  Rejected: {summary.rejected}")
    print(f"Skip advisories: {summary.skip_advised}  Staked rounds: {summary.staked_rounds}")
    print(f"Accuracy: {m.accuracy}%  Recent: {m.recent_accuracy}%  ROI: {m.overall_roi}%")
    print(f"Brier score: {m.brier_score:.4f} (lower = better)")
    if m.strategy_roi:
        print("\n-- ROI by strategy --")
        for name, roi in sorted(m.strategy_roi.items()):
            print(f"{name:<14} {roi:>6}%")
    if summary.final_weights:
        print("\n-- Final signal weights --")
        for name, weight in summary.final_weights.items():
            print(f"{name:<22} {weight:.4f}")
        print(f"Learning rate: {summary.final_learning_rate:.4f}")
    for err in summary.errors:
        print(f"  ! {err}")

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(summary.to_dict(), f, indent=2)
        print(f"\nResults saved to {args.output}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Replay recorded rounds through the predictor")
    parser.add_argument("file", help="JSON file with a list of rounds")
    parser.add_argument("--strategy", default=None, help="Strategy profile to play with")
    parser.add_argument("--follow-advice", action="store_true",
                        help="Place the recommended stake on rounds without a recorded bet")
    parser.add_argument("--db", action="store_true", help="Record into the configured database")
    parser.add_argument("--output", default=None, help="Save the summary to a JSON file")
    parser.add_argument("--log-level", default=None)
    cli_args = parser.parse_args()

    configure_logging(cli_args.log_level)
    asyncio.run(main(cli_args))
