"""
Local helper: runs the DeepLab pipeline on an image file and writes the
result as a PNG. Stands in for the picker and preview of the demo app.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from deeplab_service import config
from deeplab_service.pipeline import BackgroundRemover, ResultKind, process_image_bytes


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove the background of a local image with DeepLabV3")
    parser.add_argument("--input", required=True, help="Path to the input image")
    parser.add_argument("--output", required=True, help="Path to write the PNG result")
    parser.add_argument(
        "--result",
        default=ResultKind.FINAL_IMAGE.value,
        choices=[kind.value for kind in ResultKind],
        help="finalImage for the cutout, background for the feathered stencil",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    input_path = Path(args.input)
    output_path = Path(args.output)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    remover = BackgroundRemover.from_settings(settings)
    png_bytes = process_image_bytes(input_path.read_bytes(), ResultKind(args.result), remover)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(png_bytes)
    print(f"Wrote {args.result} output to {output_path}")


if __name__ == "__main__":
    main()
