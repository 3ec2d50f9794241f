import argparse
import sys
from pathlib import Path

from study_guide.config import MODES, PipelineConfig
from study_guide.evaluation.pipeline import generate
from study_guide.utils.io import LocalObjectStore, read_text, write_json
from study_guide.utils.logging_utils import setup_logging
from study_guide.utils.pdf_parser import pdf_to_normalized_text


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate an HTML study guide from lecture slides.")
    parser.add_argument("input", help="Normalized slide text (.txt) or a slide deck (.pdf)")
    parser.add_argument("--title", default="", help="Lecture title (defaults to the file name)")
    parser.add_argument("--doc-id", default="", help="Document id used for cache keys")
    parser.add_argument("--mode", default="maximal", choices=MODES)
    parser.add_argument("--out", default="", help="Where to write the HTML (defaults next to the input)")
    parser.add_argument("--store-root", default=None, help="Object store directory for cache and outputs")
    parser.add_argument("--time-budget", type=float, default=None, help="Wall-clock budget in seconds")
    parser.add_argument("--workers", type=int, default=None, help="Concurrent chunk extractions")
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, log_path=args.log_file)

    input_path = Path(args.input)
    if not input_path.exists():
        raise FileNotFoundError(f"Input not found: {input_path}")

    #load input
    if input_path.suffix.lower() == ".pdf":
        normalized_text, pdf_title = pdf_to_normalized_text(str(input_path))
    else:
        normalized_text, pdf_title = read_text(str(input_path)), input_path.stem

    title = args.title or pdf_title

    #config
    config = PipelineConfig.from_env()
    if args.store_root:
        config.store_root = args.store_root
    if args.time_budget is not None:
        config.time_budget_s = args.time_budget
    if args.workers is not None:
        config.max_workers = args.workers

    print(f"\nLecture: {title}")
    print(f"Mode: {args.mode}")

    result = generate(
        normalized_text=normalized_text,
        lecture_title=title,
        doc_id=args.doc_id,
        mode=args.mode,
        config=config,
        store=LocalObjectStore(config.store_root),
    )

    out_path = Path(args.out) if args.out else input_path.with_name(f"Study_Guide_{input_path.stem}.html")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(result.document_bytes)
    write_json(str(out_path.with_suffix(".json")), {
        "stored_key": result.stored_key,
        "partial": result.partial,
        "coverage": result.coverage,
        "warnings": result.warnings,
        "stats": result.stats,
        "request_id": result.request_id,
    })

    #print final results
    print("\n===== STUDY GUIDE RESULT =====")
    print(f"Saved: {out_path}")
    print(f"Stored key: {result.stored_key}")
    print(f"Coverage: {result.coverage['processed']}/{result.coverage['total']} slides"
          + (" (partial)" if result.partial else ""))
    for w in result.warnings:
        print(f"  - {w}")

    return 1 if result.partial else 0


if __name__ == "__main__":
    sys.exit(main())
