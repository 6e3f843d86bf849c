"""CLI script to index pre-chunked patient documents into Qdrant.

Input is a JSON list of records with ``id``, ``content``, ``patient_id``,
``document_id``, ``filename`` and optional ``report_date``,
``date_status`` and ``document_type``.

With ``--reindex DOCUMENT_ID`` the script instead rewrites the report date
of an already indexed document.
"""

import argparse
import json
import sys
from pathlib import Path

from healthnav.llm import embed_text
from healthnav.rag.index import get_qdrant_client, index_chunks
from healthnav.service import correct_report_date


def main() -> None:
    parser = argparse.ArgumentParser(description="Index or reindex patient document chunks")
    parser.add_argument("chunks", nargs="?", type=Path, help="JSON file of chunk records")
    parser.add_argument("--reindex", metavar="DOCUMENT_ID", help="Document whose date to rewrite")
    parser.add_argument("--patient", help="Patient id owning the document (with --reindex)")
    parser.add_argument("--date", help="Corrected report date, YYYY-MM-DD (with --reindex)")
    parser.add_argument("--date-status", default="confirmed")
    args = parser.parse_args()

    if args.reindex:
        if not args.patient:
            parser.error("--reindex requires --patient")
        if correct_report_date(args.reindex, args.patient, args.date, args.date_status):
            print(f"Reindexed document {args.reindex}.")
        else:
            print(f"Error: no indexed chunks for document {args.reindex}")
            sys.exit(1)
        return

    if args.chunks is None:
        parser.error("a chunks file is required unless --reindex is given")
    if not args.chunks.exists():
        print(f"Error: file not found: {args.chunks}")
        sys.exit(1)

    records = json.loads(args.chunks.read_text(encoding="utf-8"))
    print(f"Embedding {len(records)} chunks from {args.chunks}")
    for record in records:
        record["embedding"] = embed_text(record["content"])

    count = index_chunks(get_qdrant_client(), records)
    print(f"\nIndexed {count} chunks.")


if __name__ == "__main__":
    main()
