#!/usr/bin/env python3
import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storyline.common.db import get_conn
from storyline.ingest.normalization import source_domain


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Register a content source and link it to a topic."
    )
    parser.add_argument("topic", help="Topic slug")
    parser.add_argument("name", help="Source name")
    parser.add_argument("feed_url", help="Feed or homepage URL of the source")
    parser.add_argument("--type", dest="source_type", default="national", help="hyperlocal, regional or national")
    parser.add_argument("--credibility", type=int, default=50, help="Credibility score 0-100")
    args = parser.parse_args()

    if not 0 <= args.credibility <= 100:
        parser.error("--credibility must be between 0 and 100")

    domain = source_domain(args.feed_url)
    with get_conn() as conn:
        topic = conn.execute("SELECT id FROM topics WHERE slug = %s", (args.topic,)).fetchone()
        if topic is None:
            parser.error(f"unknown topic: {args.topic}")

        source = conn.execute(
            """
            INSERT INTO content_sources(source_name, feed_url, canonical_domain, credibility_score, source_type)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (source_name) DO UPDATE
            SET feed_url = EXCLUDED.feed_url,
                canonical_domain = EXCLUDED.canonical_domain,
                credibility_score = EXCLUDED.credibility_score,
                source_type = EXCLUDED.source_type,
                updated_at = now()
            RETURNING id
            """,
            (args.name, args.feed_url, domain, args.credibility, args.source_type),
        ).fetchone()
        conn.execute(
            """
            INSERT INTO topic_sources(topic_id, source_id)
            VALUES (%s, %s)
            ON CONFLICT (topic_id, source_id) DO UPDATE SET is_active = true
            """,
            (topic["id"], source["id"]),
        )

    print(f"Source {args.name} ({domain}) linked to {args.topic}: {source['id']}")


if __name__ == "__main__":
    main()
