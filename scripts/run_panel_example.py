"""
Utility script to exercise the Replicate integration with a single manga panel.

Usage:
    python scripts/run_panel_example.py \
        --scene "Aiko draws her katana on a rain-soaked rooftop." \
        --reference https://example.com/aiko.png

Environment variables:
    REPLICATE_API_TOKEN            - required unless you pass --api-token
    REPLICATE_TEXT_TO_IMAGE_MODEL  - optional text-to-image model override
    REPLICATE_IMAGE_TO_IMAGE_MODEL - optional image-to-image model override
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mangaforge.ai_generation import ReplicateImageGenerator, build_panel_prompt
from mangaforge.story_generation import PanelScript


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render one manga panel via Replicate.")
    parser.add_argument("--scene", required=True, help="Panel description to illustrate.")
    parser.add_argument("--dialogue", default="", help="Optional dialogue shown in the panel.")
    parser.add_argument(
        "--reference",
        action="append",
        default=[],
        help="Reference image URL (repeatable). Switches to image-to-image.",
    )
    parser.add_argument("--style", default="manga", help="Art style label.")
    parser.add_argument(
        "--color-mode",
        default="black-and-white",
        choices=["black-and-white", "color"],
    )
    parser.add_argument("--aspect-ratio", default="1:1")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--api-token",
        default=None,
        help="Optional Replicate API token override (otherwise uses environment variable).",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    generator = ReplicateImageGenerator(api_token=args.api_token)
    panel = PanelScript(description=args.scene, dialogue=args.dialogue)
    prompt = build_panel_prompt(
        panel, index=0, total=1, style=args.style, color_mode=args.color_mode
    )

    print("Running generation with the following parameters:")
    print(f"  Prompt    : {prompt}")
    print(f"  References: {', '.join(args.reference) or '(none)'}")
    if args.reference:
        print(f"  Model     : {generator.image_to_image_model}")
        image = await generator.image_to_image(
            prompt, args.reference, aspect_ratio=args.aspect_ratio, seed=args.seed
        )
    else:
        print(f"  Model     : {generator.text_to_image_model}")
        image = await generator.text_to_image(prompt, aspect_ratio=args.aspect_ratio, seed=args.seed)

    print("\nReplicate output:")
    print(f"  {image.image_url} (seed {image.seed})")
    return 0


def main(argv: list[str]) -> int:
    return asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
