"""
Human-like pointer and keyboard input for challenge solving.

Features:
- Slider drag with an ease-out progress curve, per-step jitter and
  randomized step delays
- Click with a short approach movement and a small random offset
- Variable typing delays for recognized challenge text
- Human pause simulation
- Fast mode for skipping delays
"""

import asyncio
import random
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class HumanSimulatorConfig:
    """Configuration for human-like interaction simulation."""

    # Typing configuration
    min_char_delay_ms: int = 60
    max_char_delay_ms: int = 160

    # Pause configuration
    min_pause_seconds: float = 0.3
    max_pause_seconds: float = 1.0

    # Click configuration
    pre_click_delay_ms: int = 100
    max_click_offset_px: int = 3  # Random offset added to click position

    # Mouse movement configuration
    mouse_move_steps: int = 10
    mouse_move_jitter_px: int = 2

    # Slider drag configuration
    drag_distance_px: int = 300
    drag_min_steps: int = 15
    drag_max_steps: int = 20
    drag_jitter_px: int = 3
    drag_min_step_delay_ms: int = 10
    drag_max_step_delay_ms: int = 40
    press_hold_ms: int = 120  # Hold after mouse down before moving

    # Mode flags
    fast_mode: bool = False  # Skip all delays when True


@dataclass
class DragTrace:
    """What a slider drag actually did."""
    start_x: float
    start_y: float
    distance: float
    points: list[tuple[float, float]] = field(default_factory=list)

    @property
    def steps(self) -> int:
        return len(self.points)

    @property
    def end_x(self) -> float:
        return self.points[-1][0] if self.points else self.start_x


def ease_out(t: float) -> float:
    """Cubic ease-out: fast start, slow finish."""
    return 1 - (1 - t) ** 3


class HumanSimulator:
    """
    Simulates human-like interactions for challenge solving.

    Usage:
        simulator = HumanSimulator()

        # Drag a slider handle across its track
        trace = await simulator.drag_slider(page, "#nc_1_n1z")

        # Click with mouse movement
        await simulator.click_element(page, "#nc_1_refresh1")
    """

    def __init__(
        self,
        config: Optional[HumanSimulatorConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        seed: Optional[int] = None,
    ):
        """
        Initialize the human simulator.

        Args:
            config: Configuration options. Uses defaults if not provided.
            sleep: Sleep coroutine, replaced in tests
            seed: Seed for reproducible movement
        """
        self.config = config or HumanSimulatorConfig()
        self._sleep = sleep
        self._rng = random.Random(seed)

    async def _pause_ms(self, low: float, high: float) -> None:
        if self.config.fast_mode:
            return
        await self._sleep(self._rng.uniform(low, high) / 1000.0)

    def plan_drag(self, start_x: float, start_y: float, distance: float) -> list[tuple[float, float]]:
        """
        Waypoints for a horizontal drag.

        Every point but the last carries jitter; the last lands exactly on
        ``start_x + distance`` so the handle reaches the end of the track.
        """
        steps = self._rng.randint(self.config.drag_min_steps, self.config.drag_max_steps)
        jitter = self.config.drag_jitter_px
        points = []

        for i in range(1, steps + 1):
            t = i / steps
            x = start_x + distance * ease_out(t)
            y = start_y
            if i < steps:
                x += self._rng.uniform(-jitter, jitter) * (1 - t)
                y += self._rng.uniform(-jitter, jitter)
            points.append((x, y))

        return points

    async def drag_slider(
        self,
        page,
        selector: str,
        distance: Optional[float] = None,
    ) -> Optional[DragTrace]:
        """
        Press the slider handle at its center and drag it along the track.

        Args:
            page: Playwright page object
            selector: CSS selector for the slider handle
            distance: Pixels to drag; defaults to the configured distance

        Returns:
            DragTrace, or None if the handle is missing or has no box
        """
        element = await page.query_selector(selector)
        if not element:
            logger.warning(f"Slider handle not found: {selector}")
            return None

        box = await element.bounding_box()
        if not box:
            logger.warning(f"Slider handle has no bounding box: {selector}")
            return None

        distance = distance if distance is not None else self.config.drag_distance_px
        start_x = box['x'] + box['width'] / 2
        start_y = box['y'] + box['height'] / 2
        trace = DragTrace(start_x=start_x, start_y=start_y, distance=distance)

        await page.mouse.move(start_x, start_y)
        await page.mouse.down()
        await self._pause_ms(self.config.press_hold_ms * 0.5, self.config.press_hold_ms * 1.5)

        for x, y in self.plan_drag(start_x, start_y, distance):
            await page.mouse.move(x, y)
            trace.points.append((x, y))
            await self._pause_ms(
                self.config.drag_min_step_delay_ms,
                self.config.drag_max_step_delay_ms,
            )

        await page.mouse.up()

        logger.debug(f"Dragged {selector} {distance}px in {trace.steps} steps")
        return trace

    async def human_pause(self, reason: str = "thinking") -> float:
        """
        Pause for a human-like duration.

        Args:
            reason: Reason for the pause (for logging)

        Returns:
            Actual pause duration in seconds
        """
        if self.config.fast_mode:
            return 0.0

        pause_duration = self._rng.uniform(
            self.config.min_pause_seconds,
            self.config.max_pause_seconds
        )
        logger.debug(f"Human pause ({reason}): {pause_duration:.2f}s")
        await self._sleep(pause_duration)
        return pause_duration

    async def click_element(self, page, selector: str) -> bool:
        """
        Click an element with human-like mouse movement.

        Args:
            page: Playwright page object
            selector: CSS selector for the element

        Returns:
            True if the element was found and clicked
        """
        element = await page.query_selector(selector)
        if not element:
            logger.debug(f"Element not found for click: {selector}")
            return False

        box = None if self.config.fast_mode else await element.bounding_box()
        if not box:
            await element.click()
            return True

        offset = self.config.max_click_offset_px
        target_x = box['x'] + box['width'] / 2 + self._rng.uniform(-offset, offset)
        target_y = box['y'] + box['height'] / 2 + self._rng.uniform(-offset, offset)

        await self._move_mouse_to(page, target_x, target_y)
        await self._pause_ms(self.config.pre_click_delay_ms * 0.5, self.config.pre_click_delay_ms * 1.5)
        await page.mouse.click(target_x, target_y)

        logger.debug(f"Clicked element: {selector}")
        return True

    async def _move_mouse_to(self, page, target_x: float, target_y: float) -> None:
        # Start from viewport center; the real pointer position is not exposed
        viewport = page.viewport_size
        start_x = viewport['width'] / 2 if viewport else 500
        start_y = viewport['height'] / 2 if viewport else 300

        steps = self.config.mouse_move_steps
        jitter = self.config.mouse_move_jitter_px

        for i in range(1, steps + 1):
            progress = i / steps
            remaining = 1 - progress
            x = start_x + (target_x - start_x) * progress + self._rng.uniform(-jitter, jitter) * remaining
            y = start_y + (target_y - start_y) * progress + self._rng.uniform(-jitter, jitter) * remaining
            await page.mouse.move(x, y)
            await self._pause_ms(5, 15)

    async def type_text(self, page, selector: str, text: str) -> int:
        """
        Type text into an input with variable per-character delays.

        Returns:
            Number of characters typed (0 if the input is missing)
        """
        element = await page.query_selector(selector)
        if not element:
            logger.warning(f"Input not found: {selector}")
            return 0

        await element.fill("")
        if self.config.fast_mode:
            await element.type(text)
            return len(text)

        for char in text:
            await element.type(char)
            await self._pause_ms(self.config.min_char_delay_ms, self.config.max_char_delay_ms)

        logger.debug(f"Typed {len(text)} chars into {selector}")
        return len(text)


def create_human_simulator(
    crawler_config=None,
    fast_mode: bool = False,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> HumanSimulator:
    """
    Create a HumanSimulator whose drag settings follow the crawler tunables.

    Args:
        crawler_config: CrawlerConfig with solver_* fields (defaults when None)
        fast_mode: Skip all delays (for testing)
        sleep: Sleep coroutine

    Returns:
        Configured HumanSimulator instance
    """
    config = HumanSimulatorConfig(
        drag_distance_px=getattr(crawler_config, 'solver_drag_distance_px', 300),
        drag_min_steps=getattr(crawler_config, 'solver_min_steps', 15),
        drag_max_steps=getattr(crawler_config, 'solver_max_steps', 20),
        drag_jitter_px=getattr(crawler_config, 'solver_jitter_px', 3),
        fast_mode=fast_mode,
    )
    return HumanSimulator(config, sleep=sleep)
