"""
CLI example to run the complete MangaForge pipeline end-to-end.

Usage:
    python scripts/run_full_pipeline.py \
        --request chapter_request.yaml \
        --output-dir chapters \
        --review
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mangaforge import (
    MangaChapterOrchestrator,
    PipelineSettings,
    PipelineStage,
    ProgressEvent,
    YamlChapterRepository,
)
from mangaforge.pipeline import load_request_file

_STEP_LABELS = {
    PipelineStage.PLANNING: "[1/6]",
    PipelineStage.GENERATING_NARRATIVE: "[2/6]",
    PipelineStage.NARRATIVE_REVIEW: "[2/6]",
    PipelineStage.EXTRACTING_ENTITIES: "[3/6]",
    PipelineStage.GENERATING_REFERENCES: "[4/6]",
    PipelineStage.BREAKING_INTO_PANELS: "[5/6]",
    PipelineStage.GENERATING_PANEL_IMAGES: "[6/6]",
    PipelineStage.COMPLETE: "[6/6]",
}


class ProgressTracker:
    """
    Provides user-friendly command-line progress updates for the MangaForge pipeline.
    """

    def __init__(self) -> None:
        self._bar: tqdm | None = None

    def __call__(self, event: ProgressEvent) -> None:
        if event.stage is PipelineStage.INPUT:
            self.close()
            self._write(f"Pipeline reset: {event.status_message}")
            return

        if event.stage is PipelineStage.GENERATING_PANEL_IMAGES:
            if self._bar is None:
                self._bar = tqdm(total=100, desc="Chapter progress", unit="%")
            self._bar.set_description(event.status_message[:45])
            self._bar.update(max(0.0, event.progress - self._bar.n))
            return

        self.close()
        label = _STEP_LABELS.get(event.stage, "")
        self._write(f"{label} {event.status_message} ({event.progress:.0f}%)".strip())

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


async def interactive_review(orchestrator: MangaChapterOrchestrator) -> bool:
    """
    Let the user approve, regenerate, or rewrite the narrative before illustration.
    """
    while True:
        tqdm.write("\n----- Narrative -----")
        tqdm.write(orchestrator.state.narrative)
        tqdm.write("---------------------")
        choice = input("[c]ontinue, [r]etry, re[w]rite, or [q]uit? ").strip().lower()

        if choice in {"c", "continue", ""}:
            return True
        if choice in {"q", "quit"}:
            return False
        if choice in {"r", "retry"}:
            result = await orchestrator.retry_narrative()
        elif choice in {"w", "rewrite"}:
            instruction = input("Rewrite instruction: ").strip()
            if not instruction:
                continue
            selection = input("Passage to focus on (optional): ").strip()
            result = await orchestrator.rewrite_narrative(instruction, selection)
        else:
            tqdm.write(f"Unknown option '{choice}'.")
            continue

        if not result.success:
            tqdm.write(f"Narrative update failed: {result.error}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full MangaForge chapter pipeline.")
    parser.add_argument(
        "--request",
        required=True,
        help="Path to the chapter request YAML/JSON file.",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory where chapter YAML files are stored (default: MANGAFORGE_OUTPUT_DIR or ./chapters).",
    )
    parser.add_argument(
        "--panels",
        type=int,
        default=None,
        help="Optional override for the number of panels.",
    )
    parser.add_argument(
        "--review",
        action="store_true",
        help="Pause at narrative review for interactive approval.",
    )
    parser.add_argument(
        "--angles",
        type=int,
        default=None,
        help="Alternate views to generate for each character with a reference image.",
    )
    parser.add_argument(
        "--text-model",
        default=None,
        help="LiteLLM model identifier for the writing agents.",
    )
    parser.add_argument(
        "--vision-model",
        default=None,
        help="LiteLLM model identifier for consistency checks.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    request = load_request_file(Path(args.request))
    if args.panels is not None:
        request = replace(request, panel_count=args.panels)

    settings = PipelineSettings.from_env()
    if args.output_dir:
        settings = replace(settings, output_dir=Path(args.output_dir))
    if args.angles is not None:
        settings = replace(settings, angle_count=max(0, args.angles))

    tracker = ProgressTracker()
    orchestrator = MangaChapterOrchestrator(
        settings=settings,
        repository=YamlChapterRepository(settings.output_dir),
        text_model=args.text_model,
        vision_model=args.vision_model,
        progress_callback=tracker,
    )

    try:
        result = await orchestrator.run(
            request, review=interactive_review if args.review else None
        )
    finally:
        tracker.close()

    if not result.success:
        tqdm.write(f"Pipeline failed: {result.error}")
        return 1
    if result.stage is not PipelineStage.COMPLETE:
        tqdm.write("Stopped at narrative review.")
        return 0

    tqdm.write(f"Generated {len(result.panels)} panel(s).")
    for panel in result.panels:
        tqdm.write(f"  {panel.order:>2}. {panel.image_url}")
    if result.chapter_id:
        tqdm.write(f"Saved chapter {result.chapter_id} under {settings.output_dir}")
    else:
        tqdm.write("Chapter images were generated but could not be saved.")
    return 0


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
