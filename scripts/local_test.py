"""
Quick local test helper: runs one artistic transformation on a local image
and writes a PNG to disk. This bypasses the API and the job queue.
"""

from __future__ import annotations

import argparse
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from artbooth_service.pipeline import process_image_bytes


def _parse_param(raw: str) -> tuple[str, float]:
    key, sep, value = raw.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {raw!r}")
    try:
        return key.strip(), float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Parameter {key!r} must be numeric") from exc


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply an art booth filter to a local image")
    parser.add_argument("--input", required=True, help="Path to the input image")
    parser.add_argument("--output", required=True, help="Path to write the PNG")
    parser.add_argument(
        "--kind",
        default=None,
        choices=["pencil", "watercolor", "oilpainting"],
        help="Transformation type (defaults to DEFAULT_TRANSFORMATION)",
    )
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        type=_parse_param,
        metavar="NAME=VALUE",
        help="Parameter override, e.g. --param edgeStrength=0.8 (repeatable)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    input_path = Path(args.input)
    output_path = Path(args.output)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    image_bytes = input_path.read_bytes()
    png_bytes = process_image_bytes(image_bytes, kind=args.kind, params=dict(args.param))
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(png_bytes)
    print(f"Wrote transformed output to {output_path}")


if __name__ == "__main__":
    main()
