"""Inspect or reset the stored predictor state.

Usage:
    python scripts/predictor_state.py
    python scripts/predictor_state.py --json
    python scripts/predictor_state.py --reset
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from race_predictor.analytics.metrics import accuracy_label
from race_predictor.config import configure_logging, get_settings
from race_predictor.memory import SqlBlobStore
from race_predictor.models import init_db, make_engine, make_session_factory
from race_predictor.session import PredictorSession


async def main(args) -> None:
    settings = get_settings()
    engine = make_engine()
    await init_db(engine)
    try:
        session = PredictorSession(SqlBlobStore(make_session_factory(engine)), settings)
        await session.load()

        if args.reset:
            await session.reset()
            print(f"Cleared stored predictor data in {settings.db_path}")
            return

        metrics = session.metrics()
        mood = session.mood()
        state = session.state

        if args.json:
            print(json.dumps({
                "metrics": metrics.to_dict(),
                "mood": {"mood": mood.mood, "confidence": mood.confidence, "label": mood.label},
                "learned_state": state.to_dict() if state else None,
            }, indent=2))
            return

        print(f"Database: {settings.db_path}")
        print(f"Rounds: {metrics.total_rounds}  Correct: {metrics.correct_predictions}")
        print(f"Accuracy: {metrics.accuracy}% ({accuracy_label(metrics.accuracy)})  "
              f"Recent: {metrics.recent_accuracy}%")
        print(f"Model mood: {mood.mood} - {mood.label}")
        print(f"Staked: {metrics.total_bet_amount:,.0f}  Returned: {metrics.total_payout:,.0f}  "
              f"ROI: {metrics.overall_roi}%")

        if state is None:
            print("\nNo learned state yet (predictions are odds-only).")
            return

        print(f"\nStrategy: {state.selected_strategy}  Learning rate: {state.learning_rate:.4f}")
        if state.current_log_loss is not None:
            print(f"Log-loss: {state.current_log_loss:.4f}")
        print("\n-- Signal weights --")
        for name, weight in state.signal_weights.as_dict().items():
            print(f"{name:<22} {weight:.4f}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Inspect or reset stored predictor state")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    parser.add_argument("--reset", action="store_true", help="Delete all stored history and weights")
    parser.add_argument("--log-level", default=None)
    cli_args = parser.parse_args()

    configure_logging(cli_args.log_level)
    asyncio.run(main(cli_args))
