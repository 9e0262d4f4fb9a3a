"""
Orchestrates the full MangaForge pipeline from a chapter request to stored panels.
"""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Sequence

import litellm
import yaml

from mangaforge.ai_generation import ReplicateImageGenerator, build_panel_prompt
from mangaforge.common import (
    AllPanelsFailedError,
    CompletionCallable,
    ConfigurationError,
    InvalidTransitionError,
    settle_all,
)
from mangaforge.settings import PipelineSettings, resolve_llm_api_key, resolve_text_model
from mangaforge.story_generation import (
    ChapterRequest,
    CollaborationEngine,
    EntityExtractor,
    NarrativeGenerator,
    PanelBreakdownGenerator,
    PanelScript,
    RenderedPanel,
    StoryPlanner,
)

from .matching import EntityMatcher
from .persistence import ChapterRecord, ChapterRepository, YamlChapterRepository
from .references import ImageGenerator, PanelReferences, ReferenceGenerator, ReferenceStore
from .renderer import PanelRenderer
from .state import PipelineResult, PipelineStage, PipelineState, ProgressCallback, ProgressEvent
from .verifier import ConsistencyVerifier, PanelRefiner, RefinementOutcome

logger = logging.getLogger(__name__)

STYLE_SEED_RANGE = 1_000_000_000
PANEL_PROGRESS_START = 80.0
PANEL_PROGRESS_SPAN = 15.0
PANEL_PROGRESS_CAP = 95.0

ReviewHook = Callable[["MangaChapterOrchestrator"], Awaitable[bool | None]]

_RUNNING_STAGES = {
    PipelineStage.PLANNING,
    PipelineStage.GENERATING_NARRATIVE,
    PipelineStage.EXTRACTING_ENTITIES,
    PipelineStage.GENERATING_REFERENCES,
    PipelineStage.BREAKING_INTO_PANELS,
    PipelineStage.GENERATING_PANEL_IMAGES,
}


def ensure_llm_credentials(model: str) -> None:
    """
    Raise :class:`ConfigurationError` when LiteLLM cannot find credentials for ``model``.
    """
    report = litellm.validate_environment(model=model)
    if not report.get("keys_in_environment", False):
        missing = ", ".join(report.get("missing_keys") or []) or "provider API key"
        raise ConfigurationError(f"Missing credentials for model '{model}': {missing}.")


class MangaChapterOrchestrator:
    """
    High-level coordinator that chains planning, writing, and illustration of a chapter.

    The run pauses at narrative review. :meth:`start` stops there, and
    :meth:`retry_narrative` or :meth:`rewrite_narrative` may be called any
    number of times before :meth:`continue_` finishes the chapter.

    Parameters
    ----------
    completion_fn:
        Async chat completion callable shared by every text stage. Defaults to LiteLLM.
    image_generator:
        Async image service. Defaults to :class:`ReplicateImageGenerator`, which
        requires ``REPLICATE_API_TOKEN``.
    repository:
        Chapter storage. Defaults to YAML files under ``settings.output_dir``.
    settings:
        Pipeline knobs. Defaults to :meth:`PipelineSettings.from_env`.
    progress_callback:
        Called with every :class:`ProgressEvent`.
    """

    def __init__(
        self,
        *,
        completion_fn: CompletionCallable | None = None,
        image_generator: ImageGenerator | None = None,
        repository: ChapterRepository | None = None,
        settings: PipelineSettings | None = None,
        text_model: str | None = None,
        vision_model: str | None = None,
        llm_api_key: str | None = None,
        planner: StoryPlanner | None = None,
        narrative_generator: NarrativeGenerator | None = None,
        extractor: EntityExtractor | None = None,
        panel_generator: PanelBreakdownGenerator | None = None,
        verifier: ConsistencyVerifier | None = None,
        matcher: EntityMatcher | None = None,
        progress_callback: ProgressCallback | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings or PipelineSettings.from_env()
        timeout = self._settings.call_timeout

        if completion_fn is None and resolve_llm_api_key(llm_api_key) is None:
            ensure_llm_credentials(resolve_text_model(text_model))

        engine = CollaborationEngine(
            completion_fn=completion_fn,
            model=text_model,
            api_key=llm_api_key,
            call_timeout=timeout,
            max_concurrency=self._settings.max_concurrency,
        )
        self._planner = planner or StoryPlanner(
            api_key=llm_api_key,
            model=text_model,
            completion_fn=completion_fn,
            call_timeout=timeout,
        )
        self._narrative = narrative_generator or NarrativeGenerator(engine=engine)
        self._extractor = extractor or EntityExtractor(engine=engine)
        self._panels = panel_generator or PanelBreakdownGenerator(engine=engine)

        self._image_generator = image_generator or ReplicateImageGenerator()
        self._references = ReferenceGenerator(
            self._image_generator,
            character_aspect_ratio=self._settings.character_aspect_ratio,
            location_aspect_ratio=self._settings.location_aspect_ratio,
            call_timeout=timeout,
            max_concurrency=self._settings.max_concurrency,
        )
        self._renderer = PanelRenderer(self._image_generator, call_timeout=timeout)
        self._refiner = PanelRefiner(
            verifier
            or ConsistencyVerifier(
                model=vision_model,
                api_key=llm_api_key,
                completion_fn=completion_fn,
                call_timeout=timeout,
            ),
            self._renderer,
            threshold=self._settings.verification_threshold,
        )
        self._repository = repository or YamlChapterRepository(self._settings.output_dir)
        self._matcher = matcher
        self._progress_callback = progress_callback
        self._random = rng or random.Random()
        self.state = PipelineState()

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    async def run(
        self,
        request: ChapterRequest,
        *,
        review: ReviewHook | None = None,
    ) -> PipelineResult:
        """
        Complete pipeline from request to stored chapter.

        ``review`` is awaited at narrative review and may call
        :meth:`rewrite_narrative` or :meth:`retry_narrative`; returning ``False``
        leaves the run paused there.
        """
        result = await self.start(request)
        if not result.success:
            return result

        if review is not None:
            proceed = await review(self)
            if proceed is False:
                logger.info("Review hook stopped the run at narrative review.")
                return self._result(success=True)

        return await self.continue_()

    async def start(self, request: ChapterRequest) -> PipelineResult:
        """
        Plan the story and write the chapter narrative, stopping at review.
        """
        self._require_idle("start")
        self.state = PipelineState(request=request)
        self.state.style_seed = (
            request.style_seed
            if request.style_seed is not None
            else self._random.randrange(STYLE_SEED_RANGE)
        )
        logger.info(
            "Starting chapter %d of '%s' (style seed %d).",
            request.chapter_number,
            request.story_id,
            self.state.style_seed,
        )

        try:
            self._notify(PipelineStage.PLANNING, 5, "Planning story structure...")
            plan = await self._planner.plan_story(request)
            self.state.plan = plan
            self._notify(PipelineStage.PLANNING, 10, f"Story planned: {plan.title}")

            await self._write_narrative()
        except ConfigurationError:
            raise
        except Exception as exc:
            return self._fail_before_review(exc)

        self._notify(
            PipelineStage.NARRATIVE_REVIEW,
            20,
            "Narrative ready for review.",
            word_count=len(self.state.narrative.split()),
        )
        return self._result(success=True)

    async def retry_narrative(self) -> PipelineResult:
        """
        Regenerate the narrative from scratch. Only valid at narrative review.
        """
        self._require_stage(PipelineStage.NARRATIVE_REVIEW, "retry_narrative")
        self.state.error = None
        try:
            await self._write_narrative()
        except ConfigurationError:
            raise
        except Exception as exc:
            return self._fail_at_review(exc, "Narrative retry failed")

        self._notify(PipelineStage.NARRATIVE_REVIEW, 20, "Narrative regenerated.")
        return self._result(success=True)

    async def rewrite_narrative(self, instruction: str, selection: str = "") -> PipelineResult:
        """
        Apply an edit request to the current narrative. Only valid at narrative review.
        """
        self._require_stage(PipelineStage.NARRATIVE_REVIEW, "rewrite_narrative")
        if not instruction or not instruction.strip():
            raise ValueError("instruction must be a non-empty string.")

        self.state.error = None
        request = self._request()
        try:
            revised = await self._narrative.rewrite(
                self.state.narrative,
                instruction,
                selection=selection,
                genre=request.genre,
            )
        except ConfigurationError:
            raise
        except Exception as exc:
            return self._fail_at_review(exc, "Narrative rewrite failed")

        self.state.narrative = revised
        self._notify(PipelineStage.NARRATIVE_REVIEW, 20, "Narrative rewritten.")
        return self._result(success=True)

    async def continue_(self) -> PipelineResult:
        """
        Finish the chapter: extraction, references, panel breakdown, panel images,
        and persistence. Only valid at narrative review.
        """
        self._require_stage(PipelineStage.NARRATIVE_REVIEW, "continue_")
        if not self.state.narrative.strip():
            raise InvalidTransitionError("Cannot continue without an approved narrative.")

        self.state.error = None
        self.state.clear_downstream()
        request = self._request()

        try:
            store = await self._extract_entities(request)
            await self._generate_references(store, request)
            panels = await self._break_into_panels(store, request)
            rendered = await self._render_panels(panels, store, request)
        except ConfigurationError:
            raise
        except Exception as exc:
            return self._fail_after_review(exc)

        self.state.rendered_panels = tuple(rendered)
        self.state.chapter_id = await self._persist(store, request, rendered)
        self._notify(
            PipelineStage.COMPLETE,
            100,
            "Chapter complete.",
            chapter_id=self.state.chapter_id,
            total_panels=len(rendered),
        )
        return self._result(success=True)

    async def _write_narrative(self) -> None:
        request = self._request()
        self._notify(PipelineStage.GENERATING_NARRATIVE, 15, "Agents are writing the narrative...")
        draft = await self._narrative.generate(request, self.state.plan)
        self.state.narrative = draft.text
        self.state.contributions = draft.contributions

    async def _extract_entities(self, request: ChapterRequest) -> ReferenceStore:
        self._notify(PipelineStage.EXTRACTING_ENTITIES, 30, "Extracting characters and locations...")
        extraction = await self._extractor.extract(
            self.state.narrative, user_entities=list(request.user_entities())
        )
        store = ReferenceStore(
            extraction.entities,
            style_seed=self._style_seed(),
            matcher=self._matcher,
        )
        self.state.references = store
        self._notify(
            PipelineStage.EXTRACTING_ENTITIES,
            40,
            f"Found {len(store.characters)} character(s) and {len(store.locations)} location(s).",
            characters=[entity.name for entity in store.characters],
            locations=[entity.name for entity in store.locations],
        )
        return store

    async def _generate_references(self, store: ReferenceStore, request: ChapterRequest) -> None:
        self._notify(PipelineStage.GENERATING_REFERENCES, 50, "Generating reference images...")
        report = await self._references.generate(store, style=request.style)
        for entity, image in report.generated:
            store.apply_reference(entity, image)

        angle_count = self._settings.angle_count
        if angle_count > 0:
            targets = [
                entity for entity in store.characters if entity.is_anchored and not entity.angles
            ]
            results = await settle_all(
                self._references.generate_angles(entity, angle_count, style=request.style)
                for entity in targets
            )
            for entity, angles in zip(targets, results):
                if isinstance(angles, BaseException):
                    logger.warning("Angle generation failed for '%s': %r", entity.name, angles)
                    continue
                store.apply_angles(entity, angles)

        self._notify(
            PipelineStage.GENERATING_REFERENCES,
            65,
            f"Generated {len(report.generated)} reference image(s).",
            generated=len(report.generated),
            failed=len(report.failed),
        )

    async def _break_into_panels(
        self, store: ReferenceStore, request: ChapterRequest
    ) -> Sequence[PanelScript]:
        self._notify(PipelineStage.BREAKING_INTO_PANELS, 70, "Breaking story into manga panels...")
        breakdown = await self._panels.break_into_panels(
            self.state.narrative,
            request.panel_count,
            characters=[entity.name for entity in store.characters],
            locations=[entity.name for entity in store.locations],
            genre=request.genre,
        )
        self.state.panels = breakdown.panels
        self._notify(
            PipelineStage.BREAKING_INTO_PANELS,
            75,
            f"Planned {len(breakdown.panels)} panel(s).",
            placeholders=breakdown.placeholder_count,
        )
        return breakdown.panels

    async def _render_panels(
        self,
        panels: Sequence[PanelScript],
        store: ReferenceStore,
        request: ChapterRequest,
    ) -> list[RenderedPanel]:
        total = len(panels)
        step = PANEL_PROGRESS_SPAN / total
        aspect_ratio = self._settings.panel_aspect_ratio
        narrative = self.state.narrative
        completed = 0

        self._notify(
            PipelineStage.GENERATING_PANEL_IMAGES,
            PANEL_PROGRESS_START,
            f"Rendering {total} panel(s)...",
        )

        async def _render_one(
            index: int, panel: PanelScript
        ) -> tuple[PanelReferences, RefinementOutcome | None]:
            nonlocal completed
            try:
                references = store.select(panel.description)
                prompt = build_panel_prompt(
                    panel,
                    index=index,
                    total=total,
                    style=request.style,
                    color_mode=request.color_mode,
                    narrative=narrative,
                )
                image = await self._renderer.render(
                    panel, references, prompt=prompt, aspect_ratio=aspect_ratio
                )
                if image is None:
                    return references, None
                try:
                    outcome = await self._refiner.refine(
                        panel, image, references, prompt=prompt, aspect_ratio=aspect_ratio
                    )
                except Exception:
                    logger.warning("Refinement failed, keeping the original panel.", exc_info=True)
                    outcome = RefinementOutcome(image=image)
                return references, outcome
            finally:
                completed += 1
                self._notify(
                    PipelineStage.GENERATING_PANEL_IMAGES,
                    min(self.state.progress + step, PANEL_PROGRESS_CAP),
                    f"Rendered {completed}/{total} panel(s).",
                )

        results = await settle_all(
            (_render_one(index, panel) for index, panel in enumerate(panels)),
            limit=self._settings.max_concurrency,
        )

        rendered: list[RenderedPanel] = []
        for panel, result in zip(panels, results):
            if isinstance(result, BaseException):
                logger.warning("Panel failed: %r", result)
                continue
            references, outcome = result
            if outcome is None:
                continue
            rendered.append(
                RenderedPanel(
                    image_url=outcome.image.image_url,
                    text=panel.dialogue,
                    order=len(rendered) + 1,
                    description=panel.description,
                    seed=outcome.image.seed,
                    reference_count=len(references.reference_images),
                    refined=outcome.refined,
                )
            )

        if not rendered:
            raise AllPanelsFailedError(
                PipelineStage.GENERATING_PANEL_IMAGES.value,
                f"All {total} panel render(s) failed.",
            )
        logger.info("Rendered %d/%d panel(s).", len(rendered), total)
        self._notify(
            PipelineStage.GENERATING_PANEL_IMAGES,
            PANEL_PROGRESS_CAP,
            f"Saving {len(rendered)} panel(s)...",
        )
        return rendered

    async def _persist(
        self,
        store: ReferenceStore,
        request: ChapterRequest,
        rendered: Sequence[RenderedPanel],
    ) -> str | None:
        outline = self.state.plan.outline_for(request.chapter_number) if self.state.plan else None
        record = ChapterRecord(
            story_id=request.story_id,
            chapter_number=request.chapter_number,
            title=outline.title if outline else f"Chapter {request.chapter_number}",
            narrative=self.state.narrative,
            panels=list(rendered),
        )

        chapter_id: str | None = None
        try:
            chapter_id = await self._repository.create_chapter(record)
        except Exception:
            logger.exception("Saving chapter %d failed.", request.chapter_number)

        for character in store.characters:
            try:
                await self._repository.create_character_record(request.story_id, character)
            except Exception:
                logger.warning("Saving character '%s' failed.", character.name, exc_info=True)
        return chapter_id

    def _fail_before_review(self, exc: Exception) -> PipelineResult:
        stage = self.state.stage
        logger.error("Stage %s failed: %s", stage.value, exc, exc_info=exc)
        request = self.state.request
        self.state = PipelineState(request=request, error=f"{stage.value}: {exc}")
        self._emit(PipelineStage.INPUT, 0.0, f"Generation failed: {exc}")
        return self._result(success=False)

    def _fail_at_review(self, exc: Exception, message: str) -> PipelineResult:
        logger.error("%s: %s", message, exc, exc_info=exc)
        self.state.error = f"{PipelineStage.NARRATIVE_REVIEW.value}: {exc}"
        self._emit(PipelineStage.NARRATIVE_REVIEW, self.state.progress, f"{message}: {exc}")
        return self._result(success=False)

    def _fail_after_review(self, exc: Exception) -> PipelineResult:
        stage = getattr(exc, "stage", None) or self.state.stage.value
        logger.error("Stage %s failed: %s", stage, exc, exc_info=exc)
        self.state.clear_downstream()
        self.state.error = f"{stage}: {exc}"
        self._emit(PipelineStage.NARRATIVE_REVIEW, 20.0, f"Generation failed: {exc}")
        return self._result(success=False)

    def _notify(
        self,
        stage: PipelineStage,
        progress: float,
        message: str,
        **details: Any,
    ) -> None:
        self._emit(stage, max(self.state.progress, float(progress)), message, **details)

    def _emit(self, stage: PipelineStage, progress: float, message: str, **details: Any) -> None:
        if stage is not self.state.stage:
            logger.info("Stage %s -> %s.", self.state.stage.value, stage.value)
        self.state.stage = stage
        self.state.progress = progress
        self.state.status_message = message
        if self._progress_callback is not None:
            self._progress_callback(
                ProgressEvent(stage=stage, progress=progress, status_message=message, details=details)
            )

    def _result(self, *, success: bool) -> PipelineResult:
        return PipelineResult(
            success=success,
            stage=self.state.stage,
            chapter_id=self.state.chapter_id,
            narrative=self.state.narrative,
            panel_images=self.state.panel_images,
            panels=self.state.rendered_panels,
            error=self.state.error,
        )

    def _request(self) -> ChapterRequest:
        if self.state.request is None:
            raise InvalidTransitionError("No chapter request has been started.")
        return self.state.request

    def _style_seed(self) -> int:
        if self.state.style_seed is None:
            raise InvalidTransitionError("The style seed is drawn when the run starts.")
        return self.state.style_seed

    def _require_stage(self, stage: PipelineStage, operation: str) -> None:
        if self.state.stage is not stage:
            raise InvalidTransitionError(
                f"{operation}() requires stage '{stage.value}', current stage is "
                f"'{self.state.stage.value}'."
            )

    def _require_idle(self, operation: str) -> None:
        if self.state.stage in _RUNNING_STAGES:
            raise InvalidTransitionError(
                f"{operation}() cannot run while stage '{self.state.stage.value}' is in progress."
            )


def load_request_file(path: Path | str) -> ChapterRequest:
    """
    Load a chapter request from a YAML or JSON file.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    elif suffix == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ValueError("Unsupported request file format. Use YAML or JSON.")

    if not isinstance(data, Mapping):
        raise ValueError("Request file must contain a mapping.")
    return ChapterRequest.from_mapping(data)
