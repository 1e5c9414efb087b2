"""
Generation and refinement orchestration for one studio session.

A session owns a single ``StudioState``. The UI reads ``state`` (or
``snapshot()``) and calls the operations below; nothing else mutates it.
Operations that talk to the image model are coroutines and suspend only while
the remote call is outstanding.

View states:

    Idle                      nothing generated yet
    Selecting(candidates)     several variants came back, waiting for a pick
    Editing(history, ...)     one accepted lineage, optionally remembering the
                              candidates it was picked from
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from config import QUICK_REFINEMENTS, VARIANTS_PER_GENERATION
from errors import GenerationError
from gate import ConcurrencyGate
from gemini_client import ImageService
from models import GenerationConfig, SourceImage, update_field
from presets import Preset, PresetStore
from prompts import build_generation_payload, build_refinement_payload

logger = logging.getLogger(__name__)

GENERATED_IMAGE_NAME = "generated_image.png"
GENERATED_IMAGE_TYPE = "image/png"
QUICK_COMMANDS = tuple(q["command"] for q in QUICK_REFINEMENTS)
DISCARDED_MESSAGE = "The images changed while the request was running; the result was discarded."


class Outcome(str, Enum):
    NOT_STARTED = "not_started"
    CANDIDATES = "candidates"
    ACCEPTED = "accepted"
    FAILED = "failed"


class History:
    """Linear edit lineage with a movable cursor.

    Recording a new image while the cursor sits on an earlier entry discards
    everything after the cursor first.
    """

    def __init__(self, entries: Sequence[SourceImage] = ()):
        self.entries: List[SourceImage] = list(entries)
        self.position: Optional[int] = len(self.entries) - 1 if self.entries else None

    def __len__(self):
        return len(self.entries)

    @property
    def current(self) -> Optional[SourceImage]:
        if self.position is None:
            return None
        return self.entries[self.position]

    def record(self, image: SourceImage) -> None:
        if self.position is not None:
            del self.entries[self.position + 1:]
        self.entries.append(image)
        self.position = len(self.entries) - 1

    def navigate(self, index: int) -> None:
        if not 0 <= index < len(self.entries):
            raise IndexError(f"History index {index} out of range (0-{len(self.entries) - 1})")
        self.position = index


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Selecting:
    candidates: Tuple[SourceImage, ...]


@dataclass
class Editing:
    history: History
    candidates: Optional[Tuple[SourceImage, ...]] = None


ViewState = Union[Idle, Selecting, Editing]


@dataclass
class StudioState:
    config: GenerationConfig = field(default_factory=GenerationConfig)
    images: List[SourceImage] = field(default_factory=list)
    view: ViewState = field(default_factory=Idle)
    error: Optional[str] = None
    quick_refine_in_flight: Optional[str] = None
    enhancing: bool = False


def _as_generated(data: bytes) -> SourceImage:
    return SourceImage(data=data, mime_type=GENERATED_IMAGE_TYPE, name=GENERATED_IMAGE_NAME)


class StudioSession:
    def __init__(
        self,
        service: ImageService,
        gate: Optional[ConcurrencyGate] = None,
        preset_store: Optional[PresetStore] = None,
        state: Optional[StudioState] = None,
        variants: int = VARIANTS_PER_GENERATION,
    ):
        self.service = service
        self.gate = gate or ConcurrencyGate()
        self.preset_store = preset_store
        self.state = state or StudioState()
        self.variants = max(1, variants)

    # --- read side ---

    @property
    def is_loading(self) -> bool:
        return self.gate.in_flight > 0

    @property
    def candidates(self) -> Optional[Tuple[SourceImage, ...]]:
        view = self.state.view
        if isinstance(view, Selecting):
            return view.candidates
        return None

    @property
    def history(self) -> Optional[History]:
        view = self.state.view
        return view.history if isinstance(view, Editing) else None

    @property
    def active_image(self) -> Optional[SourceImage]:
        history = self.history
        return history.current if history else None

    @property
    def can_return_to_candidates(self) -> bool:
        view = self.state.view
        return isinstance(view, Editing) and bool(view.candidates)

    def snapshot(self) -> Dict[str, Any]:
        history = self.history
        candidates = self.candidates
        return {
            "config": self.state.config.to_dict(),
            "images": [img.name for img in self.state.images],
            "candidates": len(candidates) if candidates else None,
            "history": len(history) if history else 0,
            "position": history.position if history else None,
            "loading": self.is_loading,
            "error": self.state.error,
            "quick_refine_in_flight": self.state.quick_refine_in_flight,
            "enhancing": self.state.enhancing,
            "can_return_to_candidates": self.can_return_to_candidates,
        }

    # --- guards ---

    def generate_blocked_reason(self) -> Optional[str]:
        if not self.state.images:
            return "Upload at least one image to get started."
        if self.gate.at_limit:
            return f"Limit of {self.gate.max_in_flight} simultaneous requests reached. Try again in a moment."
        return None

    def refine_blocked_reason(self, command: Optional[str] = None) -> Optional[str]:
        if self.active_image is None:
            return "Generate an image before refining it."
        if self.is_loading or self.state.quick_refine_in_flight or self.state.enhancing:
            return "Wait for the current request to finish."
        if command is not None and not command.strip():
            return "Type a refinement command first."
        return None

    def quick_refine_blocked_reason(self, command: str) -> Optional[str]:
        if command not in QUICK_COMMANDS:
            return f"Unknown quick adjustment: {command}"
        return self.refine_blocked_reason(command)

    def can_generate(self) -> bool:
        return self.generate_blocked_reason() is None

    def can_refine(self, command: Optional[str] = None) -> bool:
        return self.refine_blocked_reason(command) is None

    def can_quick_refine(self, command: str) -> bool:
        return self.quick_refine_blocked_reason(command) is None

    # --- configuration ---

    def update_config(self, name: str, value: Any) -> GenerationConfig:
        self.state.config = update_field(self.state.config, name, value)
        return self.state.config

    def apply_config(self, config: GenerationConfig) -> None:
        self.state.config = config

    # --- source images ---

    def _reset_generation(self) -> None:
        self.state.view = Idle()
        self.state.error = None

    def add_images(self, images: Sequence[SourceImage]) -> None:
        if not images:
            return
        self.state.images = self.state.images + list(images)
        self._reset_generation()

    def remove_image(self, index: int) -> SourceImage:
        images = list(self.state.images)
        removed = images.pop(index)
        self.state.images = images
        self._reset_generation()
        return removed

    def move_image(self, source: int, target: int) -> None:
        images = list(self.state.images)
        image = images.pop(source)
        images.insert(target, image)
        self.state.images = images
        self._reset_generation()

    def clear_images(self) -> None:
        self.state.images = []
        self._reset_generation()

    def reset(self) -> None:
        self.state = StudioState(config=self.state.config)

    # --- generation ---

    async def generate(self) -> Outcome:
        if not self.state.images:
            return Outcome.NOT_STARTED
        # one token covers the whole fan-out
        async with self.gate.admit() as admitted:
            if not admitted:
                return Outcome.NOT_STARTED
            self.state.error = None
            started = self.state.view = Idle()
            images = tuple(self.state.images)
            config = self.state.config
            payloads = [build_generation_payload(config, len(images), variant=i > 0) for i in range(self.variants)]
            logger.info("Generating %d variants from %d source image(s)", len(payloads), len(images))
            results = await asyncio.gather(
                *(self.service.generate_image(payload, images) for payload in payloads),
                return_exceptions=True,
            )
            return self._resolve_generation(results, started)

    def _resolve_generation(self, results, started) -> Outcome:
        if self.state.view is not started:
            # images, view or session replaced while the variants were out
            for result in results:
                if isinstance(result, BaseException) and not isinstance(result, Exception):
                    raise result
            self.state.error = DISCARDED_MESSAGE
            logger.info("Discarding %d generation result(s) for a session that moved on", len(results))
            return Outcome.FAILED
        successes = []
        failures = []
        for result in results:
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append(result)
            else:
                successes.append(_as_generated(result))
        if not successes:
            self.state.error = _reason(failures[0]) if failures else "Generation failed. Try rephrasing the request."
            logger.warning("All %d variants failed: %s", len(results), self.state.error)
            return Outcome.FAILED
        self.state.error = None
        if len(successes) == 1:
            self.state.view = Editing(History(successes))
            if failures:
                logger.info("One variant failed (%s); accepting the surviving image", _reason(failures[0]))
            return Outcome.ACCEPTED
        self.state.view = Selecting(tuple(successes))
        return Outcome.CANDIDATES

    # --- candidate selection ---

    def select_candidate(self, index: int) -> SourceImage:
        view = self.state.view
        if isinstance(view, Selecting):
            candidates = view.candidates
        elif isinstance(view, Editing) and view.candidates:
            candidates = view.candidates
        else:
            raise RuntimeError("There are no candidates to select from.")
        image = candidates[index]
        self.state.view = Editing(History([image]), candidates=candidates)
        self.state.error = None
        return image

    def return_to_candidates(self) -> bool:
        view = self.state.view
        if isinstance(view, Editing) and view.candidates:
            self.state.view = Selecting(view.candidates)
            self.state.error = None
            return True
        return False

    def cancel_selection(self) -> None:
        if isinstance(self.state.view, Selecting):
            self.state.view = Idle()

    def navigate_history(self, index: int) -> None:
        history = self.history
        if history is None:
            raise RuntimeError("There is no history to navigate.")
        history.navigate(index)
        self.state.error = None

    # --- refinement ---

    async def refine(self, command: str) -> Outcome:
        base = self.active_image
        if base is None or not (command or "").strip():
            return Outcome.NOT_STARTED
        async with self.gate.admit() as admitted:
            if not admitted:
                return Outcome.NOT_STARTED
            self.state.error = None
            view = self.state.view
            position = view.history.position
            payload = build_refinement_payload(command, self.state.config)
            logger.info("Refining image %d: %s", position, command.strip())
            try:
                data = await self.service.generate_image(payload, [base])
            except Exception as exc:
                self.state.error = _reason(exc)
                logger.warning("Refinement failed: %s", self.state.error)
                return Outcome.FAILED
            if self.state.view is not view:
                # lineage replaced by a new generation or selection meanwhile
                self.state.error = DISCARDED_MESSAGE
                logger.info("Discarding refinement result for a lineage that is no longer active")
                return Outcome.FAILED
            view.history.navigate(position)
            view.history.record(_as_generated(data))
            return Outcome.ACCEPTED

    async def quick_refine(self, command: str) -> Outcome:
        if command not in QUICK_COMMANDS:
            raise ValueError(f"Unknown quick adjustment: {command}")
        self.state.quick_refine_in_flight = command
        try:
            return await self.refine(command)
        finally:
            self.state.quick_refine_in_flight = None

    # --- prompt enhancement ---

    async def enhance_background_keywords(self) -> str:
        text = self.state.config.background_keywords.strip()
        if not text:
            return self.state.config.background_keywords
        enhanced = await self._enhance(text, "background")
        self.update_config("background_keywords", enhanced)
        return enhanced

    async def enhance_refinement(self, text: str) -> str:
        if not (text or "").strip():
            return text
        return await self._enhance(text.strip(), "refinement")

    async def _enhance(self, text, kind):
        self.state.enhancing = True
        try:
            return await self.service.enhance_text(text, kind)
        except Exception as exc:
            logger.warning("Enhancement failed, keeping original text: %s", exc)
            return text
        finally:
            self.state.enhancing = False

    # --- presets ---

    def _require_presets(self) -> PresetStore:
        if self.preset_store is None:
            raise RuntimeError("Preset storage is not configured.")
        return self.preset_store

    def presets(self) -> List[Preset]:
        return self._require_presets().list()

    def save_preset(self, name: str, overwrite: bool = False) -> Preset:
        return self._require_presets().save(name, self.state.config, overwrite=overwrite)

    def load_preset(self, name: str) -> GenerationConfig:
        self.apply_config(self._require_presets().load(name))
        return self.state.config

    def delete_preset(self, name: str) -> None:
        self._require_presets().delete(name)


def _reason(exc: Exception) -> str:
    if isinstance(exc, GenerationError):
        return exc.reason
    return str(exc) or "An unknown error occurred."
