"""
Snapshot Replay
Feeds exported bills and products documents through the aggregation engine
and prints the resulting dashboard metrics.

Usage:
    python scripts/replay_snapshots.py --data-dir ./export
"""

import argparse
import json
import sys
from pathlib import Path

from billing_analytics.aggregation import AggregationEngine
from billing_analytics.config import get_settings
from billing_analytics.config.logging import configure_logging
from billing_analytics.ingestion import InMemoryChangeFeed


def load_documents(path: Path) -> list:
    """Load a JSON export: either a list of documents or an id -> document map"""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)

    if isinstance(data, dict):
        return [{"id": doc_id, **doc} for doc_id, doc in data.items()]
    return data


def replay(bills: list, products: list) -> dict:
    settings = get_settings()
    feed = InMemoryChangeFeed()
    engine = AggregationEngine(feed)
    engine.subscribe()

    feed.publish(settings.feed.catalog_collection, products)
    feed.publish(settings.feed.transactions_collection, bills)

    result = engine.get_snapshot().to_dict()
    result["anomalies"] = [
        {
            "collection": a.collection,
            "record_id": a.record_id,
            "type": a.anomaly_type.value,
            "message": a.message,
        }
        for a in engine.last_anomalies
    ]
    engine.unsubscribe()
    return result


def main():
    parser = argparse.ArgumentParser(description="Replay billing snapshots through the aggregation engine")
    parser.add_argument("--data-dir", type=Path, default=Path("."), help="Directory holding bills.json and products.json")
    parser.add_argument("--log-level", default="WARNING", help="Log level while replaying")
    args = parser.parse_args()

    configure_logging(args.log_level, "text")

    bills_path = args.data_dir / "bills.json"
    products_path = args.data_dir / "products.json"
    for path in (bills_path, products_path):
        if not path.exists():
            print(f"Missing export: {path}", file=sys.stderr)
            return 1

    result = replay(load_documents(bills_path), load_documents(products_path))
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
