#!/usr/bin/env python3
import argparse
import asyncio
import json
from collections import Counter
from pathlib import Path

import httpx


async def _submit(client: httpx.AsyncClient, base_url: str, topic_id: str, article: dict) -> str:
    response = await client.post(f"{base_url}/topics/{topic_id}/articles", json=article)
    if response.status_code != 200:
        return f"http_{response.status_code}"
    return response.json()["status"]


async def main() -> None:
    parser = argparse.ArgumentParser(description="Submit a JSON list of scraped articles to a topic.")
    parser.add_argument("topic_id", help="Topic UUID to submit into")
    parser.add_argument("path", type=Path, help="JSON file holding a list of article objects")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--concurrency", type=int, default=8)
    args = parser.parse_args()

    articles = json.loads(args.path.read_text())
    semaphore = asyncio.Semaphore(max(1, args.concurrency))

    async with httpx.AsyncClient(timeout=60) as client:

        async def _bounded(article: dict) -> str:
            async with semaphore:
                return await _submit(client, args.base_url.rstrip("/"), args.topic_id, article)

        statuses = await asyncio.gather(*[_bounded(article) for article in articles])

    for status, count in sorted(Counter(statuses).items()):
        print(f"{status}: {count}")


if __name__ == "__main__":
    asyncio.run(main())
