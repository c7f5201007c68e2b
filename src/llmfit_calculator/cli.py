from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import HardwareConfig, ModelConfig, SweepRange
from .estimator import estimate


logger = logging.getLogger(__name__)


def _existing_path(value: str) -> Path:
    path = Path(value)
    if not path.exists():
        raise argparse.ArgumentTypeError(f"File not found: {value}")
    return path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="llmfit-calculator", add_help=True)
    parser.add_argument("--model", required=True, type=_existing_path, help="Path to model (yaml|json)")
    parser.add_argument("--hardware", required=True, type=_existing_path, help="Path to hardware (yaml|json)")
    parser.add_argument("--min-bits", type=float, default=2.0, help="Lowest bits/weight in the sweep")
    parser.add_argument("--max-bits", type=float, default=16.0, help="Highest bits/weight in the sweep")
    parser.add_argument("--step", type=float, default=0.5, help="Sweep step in bits/weight")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write report JSON to this path (default: stdout)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Diagnostics on stderr (default: WARNING)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")

    try:
        model = ModelConfig.from_yaml(args.model)
        hardware = HardwareConfig.from_yaml(args.hardware)
        sweep = SweepRange(min_bits=args.min_bits, max_bits=args.max_bits, step=args.step)
        report = estimate(
            model=model,
            hardware=hardware,
            sweep=sweep,
            paths={
                "model": str(args.model),
                "hardware": str(args.hardware),
            },
        )
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        return 2

    payload = report.model_dump(mode="json")
    text = json.dumps(payload, indent=2, sort_keys=True)
    if args.output is None:
        print(text)
        return 0

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(text + "\n", encoding="utf-8")
    logger.info("wrote report to %s", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
