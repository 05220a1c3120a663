"""
Slider challenge solving with graduated escalation.

Slider interstitials are not reliably beaten by motion simulation alone, so
the solver degrades through increasingly expensive strategies:

1. Drag the slider, clicking the refresh control and retrying on failure
2. Read a text challenge with an optical-recognition collaborator
3. Hand the page to a human operator for a bounded window

Usage:
    from supplier_crawler.utils.captcha_solver import SliderCaptchaSolver

    solver = SliderCaptchaSolver(recognizer=TesseractRecognizer())
    challenge = await solver.solve(page)  # raises ChallengeExhausted
"""
import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ..exceptions import ChallengeExhausted
from ..infrastructure.retry import retry_async
from ..page_classifier import PageClass, PageClassifier
from .human_simulator import HumanSimulator, create_human_simulator

logger = logging.getLogger(__name__)


SLIDER_HANDLE_SELECTOR = "#nc_1_n1z, .nc_iconfont.btn_slide"
SLIDER_WRAPPER_SELECTOR = "#nc_1_wrapper, .nc_wrapper"
SLIDER_REFRESH_SELECTOR = "#nc_1_refresh1, .errloading a, .nc-lang-cnt a"
SUCCESS_MARKERS = ("nc_ok", "success")

TEXT_CHALLENGE_IMAGE_SELECTOR = "img[src*='captcha'], img[src*='checkcode'], .captcha-image img"
TEXT_CHALLENGE_INPUT_SELECTOR = "input[name*='captcha'], input[id*='checkcode'], .captcha-input input"
TEXT_CHALLENGE_SUBMIT_SELECTOR = "button[type='submit'], .captcha-submit, input[type='submit']"


class ChallengeState(Enum):
    """Lifecycle of a single challenge encounter."""
    DETECTED = "detected"
    ATTEMPTING = "attempting"
    SOLVED = "solved"
    REFRESHED = "refreshed"
    EXHAUSTED = "exhausted"


class SolveStrategy(Enum):
    """Which remediation resolved the challenge."""
    SLIDER = "slider"
    OCR = "ocr"
    MANUAL = "manual"


@dataclass
class CaptchaChallenge:
    """A challenge encounter on one page."""
    indicator: Optional[str] = None  # Detection indicator that matched
    state: ChallengeState = ChallengeState.DETECTED
    attempts: int = 0
    strategy: Optional[SolveStrategy] = None
    history: list[str] = field(default_factory=list)
    detected_at: datetime = field(default_factory=datetime.now)
    resolved_at: Optional[datetime] = None

    def transition(self, state: ChallengeState, note: str = "") -> None:
        self.state = state
        self.history.append(f"{state.value}: {note}" if note else state.value)
        if state in (ChallengeState.SOLVED, ChallengeState.EXHAUSTED):
            self.resolved_at = datetime.now()

    @property
    def solved(self) -> bool:
        return self.state == ChallengeState.SOLVED

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "indicator": self.indicator,
            "state": self.state.value,
            "attempts": self.attempts,
            "strategy": self.strategy.value if self.strategy else None,
            "history": list(self.history),
            "detected_at": self.detected_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


# =============================================================================
# Optical recognition collaborators
# =============================================================================

class BaseTextRecognizer(ABC):
    """
    Abstract base class for text challenge recognizers.

    Implement ``recognize`` to plug in a different OCR backend.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the recognizer."""
        pass

    @abstractmethod
    async def recognize(self, image_bytes: bytes) -> str:
        """
        Read the text in a challenge image.

        Args:
            image_bytes: PNG screenshot of the challenge image

        Returns:
            Recognized text, empty string when nothing was read
        """
        pass


class TesseractRecognizer(BaseTextRecognizer):
    """
    Tesseract via pytesseract, with grayscale and autocontrast preprocessing.

    Needs the ``ocr`` extra and a tesseract binary on PATH.
    """

    def __init__(
        self,
        lang: str = "eng",
        tesseract_config: str = "--psm 7",
        tesseract_cmd: Optional[str] = None,
        upscale: float = 2.0,
    ):
        self.lang = lang
        self.tesseract_config = tesseract_config
        self.tesseract_cmd = tesseract_cmd
        self.upscale = upscale

    @property
    def name(self) -> str:
        return "tesseract"

    async def recognize(self, image_bytes: bytes) -> str:
        return await asyncio.to_thread(self._recognize_sync, image_bytes)

    def _recognize_sync(self, image_bytes: bytes) -> str:
        try:
            import io

            import pytesseract
            from PIL import Image, ImageOps
        except ImportError:
            raise ImportError(
                "OCR dependencies not installed. "
                "Install with: pip install 'supplier-crawler[ocr]' (and the tesseract binary)"
            )

        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

        img = Image.open(io.BytesIO(image_bytes))
        img = ImageOps.autocontrast(ImageOps.grayscale(img))
        if self.upscale and self.upscale != 1.0:
            new_size = (int(img.width * self.upscale), int(img.height * self.upscale))
            img = img.resize(new_size, Image.LANCZOS)

        text = pytesseract.image_to_string(img, lang=self.lang, config=self.tesseract_config) or ""
        return "".join(text.split())


class StaticTextRecognizer(BaseTextRecognizer):
    """Returns a fixed answer. Useful for tests and dry runs."""

    def __init__(self, text: str = ""):
        self.text = text
        self.calls: list[bytes] = []

    @property
    def name(self) -> str:
        return "static"

    async def recognize(self, image_bytes: bytes) -> str:
        self.calls.append(image_bytes)
        return self.text


def get_recognizer(name: Optional[str], **kwargs) -> Optional[BaseTextRecognizer]:
    """
    Get a text recognizer instance.

    Args:
        name: "tesseract", "static" or None for no recognizer
        **kwargs: Recognizer options

    Returns:
        Recognizer instance or None
    """
    if not name:
        return None
    name = name.lower()
    if name == "tesseract":
        return TesseractRecognizer(**kwargs)
    elif name == "static":
        return StaticTextRecognizer(**kwargs)
    else:
        raise ValueError(f"Unknown recognizer: {name}")


# =============================================================================
# Slider solver
# =============================================================================

class _SliderRejected(Exception):
    """The drag did not pass and the slider was refreshed for another go."""


class SliderCaptchaSolver:
    """
    Solve a slider challenge, escalating to OCR and then to a human.

    State machine per encounter:
        detected -> attempting(n) -> solved
                                  -> refreshed -> attempting(n+1)
                                  -> exhausted
    """

    def __init__(
        self,
        classifier: Optional[PageClassifier] = None,
        simulator: Optional[HumanSimulator] = None,
        recognizer: Optional[BaseTextRecognizer] = None,
        max_attempts: int = 4,
        settle_seconds: float = 1.2,
        retry_base_delay: float = 0.5,
        manual_window_seconds: float = 240.0,
        manual_poll_seconds: float = 2.0,
        interactive: bool = True,
        page_timeout_ms: int = 60000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize solver.

        Args:
            classifier: Used to decide whether the challenge is gone
            simulator: Performs the drag and clicks
            recognizer: Optional OCR collaborator
            max_attempts: Slider drags before escalating
            settle_seconds: Wait after a drag before checking the outcome
            retry_base_delay: Backoff base between slider attempts
            manual_window_seconds: How long a human gets; 0 disables
            manual_poll_seconds: Classification poll interval in that window
            interactive: Whether a human can reach the browser at all
            page_timeout_ms: Default timeout restored after the manual window
            sleep: Sleep coroutine, replaced in tests
        """
        self.classifier = classifier or PageClassifier()
        self.simulator = simulator or create_human_simulator(sleep=sleep)
        self.recognizer = recognizer
        self.max_attempts = max_attempts
        self.settle_seconds = settle_seconds
        self.retry_base_delay = retry_base_delay
        self.manual_window_seconds = manual_window_seconds
        self.manual_poll_seconds = manual_poll_seconds
        self.interactive = interactive
        self.page_timeout_ms = page_timeout_ms
        self._sleep = sleep

        # Statistics
        self._encounters = 0
        self._solved_by: Dict[str, int] = {s.value: 0 for s in SolveStrategy}
        self._exhausted = 0

    @classmethod
    def from_config(
        cls,
        config,
        recognizer: Optional[BaseTextRecognizer] = None,
        classifier: Optional[PageClassifier] = None,
        interactive: bool = True,
        page_timeout_ms: int = 60000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "SliderCaptchaSolver":
        """Build a solver from CrawlerConfig tunables."""
        return cls(
            classifier=classifier,
            simulator=create_human_simulator(config, sleep=sleep),
            recognizer=recognizer,
            max_attempts=config.solver_max_attempts,
            settle_seconds=config.solver_settle_seconds,
            retry_base_delay=config.solver_retry_base_delay,
            manual_window_seconds=config.manual_window_seconds,
            manual_poll_seconds=config.manual_poll_seconds,
            interactive=interactive,
            page_timeout_ms=page_timeout_ms,
            sleep=sleep,
        )

    async def solve(self, page) -> CaptchaChallenge:
        """
        Run the escalation chain on the current page.

        Returns:
            The solved CaptchaChallenge

        Raises:
            ChallengeExhausted: Every strategy failed
        """
        self._encounters += 1
        challenge = CaptchaChallenge(indicator=await self.classifier.detect_challenge(page))
        challenge.transition(ChallengeState.DETECTED, challenge.indicator or "")
        logger.info(f"Solving challenge ({challenge.indicator})")

        if await self._try_slider(page, challenge):
            return self._mark_solved(challenge, SolveStrategy.SLIDER)

        if self.recognizer is not None and await self._try_text_recognition(page, challenge):
            return self._mark_solved(challenge, SolveStrategy.OCR)

        if self.interactive and self.manual_window_seconds > 0:
            if await self._wait_for_manual(page, challenge):
                return self._mark_solved(challenge, SolveStrategy.MANUAL)

        challenge.transition(ChallengeState.EXHAUSTED, f"after {challenge.attempts} attempts")
        self._exhausted += 1
        logger.warning(f"Challenge exhausted after {challenge.attempts} attempts")
        raise ChallengeExhausted(
            f"Challenge not solved after {challenge.attempts} attempts", challenge
        )

    def _mark_solved(self, challenge: CaptchaChallenge, strategy: SolveStrategy) -> CaptchaChallenge:
        challenge.strategy = strategy
        challenge.transition(ChallengeState.SOLVED, strategy.value)
        self._solved_by[strategy.value] += 1
        logger.info(f"Challenge solved by {strategy.value} after {challenge.attempts} attempts")
        return challenge

    async def _try_slider(self, page, challenge: CaptchaChallenge) -> bool:
        if await page.query_selector(SLIDER_HANDLE_SELECTOR) is None:
            logger.info("No slider handle on page, escalating")
            return False

        async def _attempt(n: int) -> bool:
            challenge.attempts += 1
            challenge.transition(ChallengeState.ATTEMPTING, f"slider {n}")

            trace = await self.simulator.drag_slider(page, SLIDER_HANDLE_SELECTOR)
            if trace is None:
                return False
            if await self.is_solved(page):
                return True

            if await self.simulator.click_element(page, SLIDER_REFRESH_SELECTOR):
                challenge.transition(ChallengeState.REFRESHED, f"slider {n}")
                raise _SliderRejected(f"slider attempt {n} rejected")

            logger.info("Slider rejected and no refresh control, escalating")
            return False

        try:
            return await retry_async(
                _attempt,
                attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                retry_on=lambda e: isinstance(e, _SliderRejected),
                sleep=self._sleep,
                label="Slider challenge",
            )
        except _SliderRejected:
            logger.info(f"Slider failed {self.max_attempts} times, escalating")
            return False

    async def is_solved(self, page) -> bool:
        """
        Check the outcome of an attempt after the settle delay.

        Solved when the wrapper carries a success marker or the page no
        longer classifies as a challenge.
        """
        await self._sleep(self.settle_seconds)

        try:
            wrapper = await page.query_selector(SLIDER_WRAPPER_SELECTOR)
            if wrapper is not None:
                classes = await wrapper.get_attribute("class") or ""
                if any(marker in classes for marker in SUCCESS_MARKERS):
                    return True
        except Exception as e:
            logger.debug(f"Could not read slider wrapper: {e}")

        return await self.classifier.classify(page) != PageClass.CHALLENGE

    async def _try_text_recognition(self, page, challenge: CaptchaChallenge) -> bool:
        image = await page.query_selector(TEXT_CHALLENGE_IMAGE_SELECTOR)
        if image is None:
            logger.info("No text challenge image, skipping recognition")
            return False

        challenge.attempts += 1
        challenge.transition(ChallengeState.ATTEMPTING, f"ocr via {self.recognizer.name}")

        try:
            text = (await self.recognizer.recognize(await image.screenshot())).strip()
        except Exception as e:
            logger.warning(f"Text recognition failed: {e}")
            return False
        if not text:
            logger.info("Recognizer returned no text")
            return False

        if not await self.simulator.type_text(page, TEXT_CHALLENGE_INPUT_SELECTOR, text):
            return False
        if not await self.simulator.click_element(page, TEXT_CHALLENGE_SUBMIT_SELECTOR):
            await page.keyboard.press("Enter")

        return await self.is_solved(page)

    async def _wait_for_manual(self, page, challenge: CaptchaChallenge) -> bool:
        polls = max(1, math.ceil(self.manual_window_seconds / self.manual_poll_seconds))
        challenge.transition(ChallengeState.ATTEMPTING, "manual")
        logger.warning(
            f"Waiting up to {self.manual_window_seconds:.0f}s for the challenge "
            f"to be solved in the browser window"
        )

        page.set_default_timeout(0)
        try:
            for _ in range(polls):
                await self._sleep(self.manual_poll_seconds)
                try:
                    if await self.classifier.classify(page) != PageClass.CHALLENGE:
                        return True
                except Exception as e:
                    logger.debug(f"Classification during manual window failed: {e}")
            return False
        finally:
            page.set_default_timeout(self.page_timeout_ms)

    def get_stats(self) -> Dict[str, Any]:
        """Get solver statistics."""
        solved = sum(self._solved_by.values())
        return {
            "encounters": self._encounters,
            "solved": solved,
            "solved_by": dict(self._solved_by),
            "exhausted": self._exhausted,
            "success_rate": solved / self._encounters if self._encounters > 0 else 0,
        }
