#!/usr/bin/env python3
"""
Seed Room Documents

Posts sample documents to the RoomRAG ingest endpoint using the ingest
bearer token.

Environment (``.env`` is read if present):
    SEED_API     Ingest URL (default http://localhost:8000/api/v1/ingest)
    SEED_BEARER  Value of INGEST_TOKEN on the server

Usage:
    python scripts/seed_docs.py
    python scripts/seed_docs.py --docs-dir docs/rooms --room pink-beard
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

import httpx
from dotenv import load_dotenv

DEFAULT_API_URL = "http://localhost:8000/api/v1/ingest"
TIMEOUT = 60.0

SAMPLE_DOCS: list[dict[str, str]] = [
    {
        "source": "faq",
        "title": "Exithis FAQ",
        "room_slug": "global",
        "text": """
About Exithis:
- Standard game length: 60 minutes.
- Booking: online at exithis.com; walk-ins subject to availability.
Policies:
- Age recommendations, rescheduling, cancellation, arrival instructions.
Rooms:
- Pink Beard: short blurb, difficulty and family-friendly tips.
- Tower Control: short blurb, difficulty and group-size tips.
Hints:
- We provide gentle, stepwise hints upon request; just ask "hint" in chat.
Contact:
- Best email, phone and opening hours.
""",
    },
]


def log_info(msg: str) -> None:
    print(f"ℹ {msg}")


def log_success(msg: str) -> None:
    print(f"✓ {msg}")


def log_error(msg: str) -> None:
    print(f"✗ {msg}")


def load_docs_dir(docs_dir: Path, room: str) -> list[dict[str, str]]:
    """One document per ``*.md`` / ``*.txt`` file, titled after the file."""
    docs = []
    for path in sorted([*docs_dir.glob("*.md"), *docs_dir.glob("*.txt")]):
        docs.append(
            {
                "source": path.name,
                "title": path.stem.replace("-", " ").replace("_", " ").title(),
                "room_slug": room,
                "text": path.read_text(encoding="utf-8"),
            }
        )
    return docs


def ingest_document(api_url: str, bearer: str | None, doc: dict[str, str]) -> bool:
    """Post a single document; True on 200."""
    headers = {"Authorization": f"Bearer {bearer}"} if bearer else {}
    try:
        r = httpx.post(api_url, json=doc, headers=headers, timeout=TIMEOUT)
    except httpx.RequestError as e:
        log_error(f"Failed {doc['title']}: {e}")
        return False

    if r.status_code == 200:
        data = r.json()
        log_success(f"Ingested {doc['title']} → room {data['room_slug']} ({data['chunks']} chunks)")
        return True
    log_error(f"Failed {doc['title']}: {r.status_code} - {r.text}")
    return False


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Seed room documents into RoomRAG")
    parser.add_argument("--api-url", default=os.getenv("SEED_API", DEFAULT_API_URL))
    parser.add_argument("--bearer", default=os.getenv("SEED_BEARER"))
    parser.add_argument(
        "--docs-dir", type=Path, help="Ingest *.md / *.txt files instead of the sample FAQ"
    )
    parser.add_argument("--room", default="global", help="Room for --docs-dir documents")
    args = parser.parse_args()

    if not args.bearer:
        log_info("SEED_BEARER not set; relying on origin/referer access")

    if args.docs_dir is not None:
        if not args.docs_dir.is_dir():
            log_error(f"Documents directory not found: {args.docs_dir}")
            return 1
        docs = load_docs_dir(args.docs_dir, args.room)
    else:
        docs = SAMPLE_DOCS

    if not docs:
        log_error("No documents to ingest")
        return 1

    log_info(f"Ingesting {len(docs)} document(s) into {args.api_url}")
    success = sum(ingest_document(args.api_url, args.bearer, doc) for doc in docs)

    if success == len(docs):
        log_success(f"Ingested {success}/{len(docs)} documents")
        return 0
    log_error(f"Ingested {success}/{len(docs)} documents")
    return 1


if __name__ == "__main__":
    sys.exit(main())
