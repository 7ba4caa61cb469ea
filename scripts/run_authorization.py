from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parent.parent))

from authdesk import firestore_client as fdb
from authdesk.completion_client import CompletionClient
from authdesk.config import Settings
from authdesk.pdf_text import extract_pdf_text
from authdesk.pipeline import draft_authorization
from authdesk.retrieval_client import RetrievalClient


def main() -> None:
    parser = argparse.ArgumentParser(description="Draft a prior authorization from a visit-note PDF")
    parser.add_argument("--pdf", required=True, help="Path to the visit-note PDF")
    parser.add_argument("--out", default=None, help="Path to write the drafted authorization JSON")
    parser.add_argument("--employee-id", default=None, help="Employee the authorization belongs to")
    parser.add_argument("--plan-name", default="", help="Medical plan / payer name")
    parser.add_argument("--save", action="store_true", help="Create the authorization in Firestore")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = Settings.from_env()
    settings.require()
    fdb.configure(settings)

    pdf_path = Path(args.pdf)
    if not pdf_path.exists():
        parser.error(f"PDF not found: {pdf_path}")

    auth = draft_authorization(
        extract_pdf_text(pdf_path.read_bytes()),
        CompletionClient(settings),
        RetrievalClient(settings),
        employee_id=args.employee_id,
        medical_plan_name=args.plan_name,
    )
    if args.save:
        auth = fdb.create_prior_authorization(auth)

    payload = json.dumps(auth.model_dump(by_alias=True, mode="json"), indent=2)
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(payload, encoding="utf-8")
        print(f"Wrote authorization JSON to {out_path}")
    else:
        print(payload)


if __name__ == "__main__":
    main()
