"""Tests for slider challenge solving and its escalation chain."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from supplier_crawler.config import CrawlerConfig
from supplier_crawler.exceptions import ChallengeExhausted
from supplier_crawler.page_classifier import PageClass
from supplier_crawler.utils.captcha_solver import (
    SLIDER_HANDLE_SELECTOR,
    SLIDER_REFRESH_SELECTOR,
    SLIDER_WRAPPER_SELECTOR,
    TEXT_CHALLENGE_IMAGE_SELECTOR,
    TEXT_CHALLENGE_INPUT_SELECTOR,
    TEXT_CHALLENGE_SUBMIT_SELECTOR,
    CaptchaChallenge,
    ChallengeState,
    SliderCaptchaSolver,
    SolveStrategy,
    StaticTextRecognizer,
    TesseractRecognizer,
    get_recognizer,
)
from supplier_crawler.utils.human_simulator import HumanSimulator, HumanSimulatorConfig


def element(**attrs):
    el = MagicMock()
    el.bounding_box = AsyncMock(return_value={"x": 10, "y": 10, "width": 40, "height": 30})
    el.click = AsyncMock()
    el.fill = AsyncMock()
    el.type = AsyncMock()
    el.screenshot = AsyncMock(return_value=b"png-bytes")
    el.get_attribute = AsyncMock(return_value=attrs.get("cls", "nc_wrapper"))
    return el


def make_page(elements):
    page = MagicMock()
    page.query_selector = AsyncMock(side_effect=lambda selector: elements.get(selector))
    page.mouse.move = AsyncMock()
    page.mouse.down = AsyncMock()
    page.mouse.up = AsyncMock()
    page.mouse.click = AsyncMock()
    page.keyboard.press = AsyncMock()
    return page


def make_classifier(classify=PageClass.CHALLENGE):
    classifier = MagicMock()
    classifier.detect_challenge = AsyncMock(return_value="slider_wrapper")
    if isinstance(classify, list):
        classifier.classify = AsyncMock(side_effect=classify)
    else:
        classifier.classify = AsyncMock(return_value=classify)
    return classifier


def make_solver(classifier, **kwargs):
    kwargs.setdefault("interactive", False)
    kwargs.setdefault("sleep", AsyncMock())
    return SliderCaptchaSolver(
        classifier=classifier,
        simulator=HumanSimulator(HumanSimulatorConfig(fast_mode=True)),
        **kwargs,
    )


class TestCaptchaChallenge:

    def test_transitions_record_history(self):
        challenge = CaptchaChallenge(indicator="slider_wrapper")
        challenge.transition(ChallengeState.ATTEMPTING, "slider 1")
        challenge.transition(ChallengeState.SOLVED, "slider")

        assert challenge.solved is True
        assert challenge.resolved_at is not None
        assert challenge.history == ["attempting: slider 1", "solved: slider"]
        assert challenge.to_dict()["state"] == "solved"


class TestSliderStrategy:
    """Slider drag with refresh and retry."""

    @pytest.mark.asyncio
    async def test_solved_on_first_drag(self):
        wrapper = element(cls="nc_wrapper nc_ok")
        page = make_page({
            SLIDER_HANDLE_SELECTOR: element(),
            SLIDER_WRAPPER_SELECTOR: wrapper,
        })
        solver = make_solver(make_classifier())

        challenge = await solver.solve(page)

        assert challenge.state == ChallengeState.SOLVED
        assert challenge.strategy == SolveStrategy.SLIDER
        assert challenge.attempts == 1
        page.mouse.down.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_solved_when_page_stops_classifying_as_challenge(self):
        page = make_page({SLIDER_HANDLE_SELECTOR: element()})
        solver = make_solver(make_classifier(PageClass.RESULTS))

        challenge = await solver.solve(page)

        assert challenge.strategy == SolveStrategy.SLIDER

    @pytest.mark.asyncio
    async def test_refresh_then_retry(self):
        wrapper = element()
        wrapper.get_attribute = AsyncMock(side_effect=["nc_wrapper", "nc_wrapper nc_ok"])
        refresh = element()
        page = make_page({
            SLIDER_HANDLE_SELECTOR: element(),
            SLIDER_WRAPPER_SELECTOR: wrapper,
            SLIDER_REFRESH_SELECTOR: refresh,
        })
        solver = make_solver(make_classifier())

        challenge = await solver.solve(page)

        assert challenge.attempts == 2
        assert challenge.strategy == SolveStrategy.SLIDER
        assert any(h.startswith("refreshed") for h in challenge.history)
        refresh.click.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhausts_after_max_attempts(self):
        page = make_page({
            SLIDER_HANDLE_SELECTOR: element(),
            SLIDER_WRAPPER_SELECTOR: element(),
            SLIDER_REFRESH_SELECTOR: element(),
        })
        solver = make_solver(make_classifier(), max_attempts=4)

        with pytest.raises(ChallengeExhausted) as exc_info:
            await solver.solve(page)

        challenge = exc_info.value.challenge
        assert challenge.state == ChallengeState.EXHAUSTED
        assert challenge.attempts == 4
        assert page.mouse.down.await_count == 4
        assert solver.get_stats()["exhausted"] == 1

    @pytest.mark.asyncio
    async def test_backoff_between_slider_attempts(self):
        sleep = AsyncMock()
        page = make_page({
            SLIDER_HANDLE_SELECTOR: element(),
            SLIDER_WRAPPER_SELECTOR: element(),
            SLIDER_REFRESH_SELECTOR: element(),
        })
        solver = make_solver(
            make_classifier(), max_attempts=3, settle_seconds=1.2, retry_base_delay=0.5, sleep=sleep
        )

        with pytest.raises(ChallengeExhausted):
            await solver.solve(page)

        delays = [c.args[0] for c in sleep.await_args_list]
        assert delays.count(1.2) == 3
        assert 0.5 in delays and 1.0 in delays

    @pytest.mark.asyncio
    async def test_no_refresh_control_escalates_immediately(self):
        page = make_page({
            SLIDER_HANDLE_SELECTOR: element(),
            SLIDER_WRAPPER_SELECTOR: element(),
        })
        solver = make_solver(make_classifier(), max_attempts=4)

        with pytest.raises(ChallengeExhausted) as exc_info:
            await solver.solve(page)

        assert exc_info.value.challenge.attempts == 1


class TestEscalation:
    """OCR and manual window."""

    @pytest.mark.asyncio
    async def test_escalates_to_text_recognition(self):
        wrapper = element()
        wrapper.get_attribute = AsyncMock(side_effect=["nc_wrapper", "nc_wrapper nc_ok"])
        text_input = element()
        submit = element()
        page = make_page({
            SLIDER_HANDLE_SELECTOR: element(),
            SLIDER_WRAPPER_SELECTOR: wrapper,
            TEXT_CHALLENGE_IMAGE_SELECTOR: element(),
            TEXT_CHALLENGE_INPUT_SELECTOR: text_input,
            TEXT_CHALLENGE_SUBMIT_SELECTOR: submit,
        })
        recognizer = StaticTextRecognizer("AB12")
        solver = make_solver(make_classifier(), recognizer=recognizer)

        challenge = await solver.solve(page)

        assert challenge.strategy == SolveStrategy.OCR
        assert challenge.attempts == 2
        assert recognizer.calls == [b"png-bytes"]
        text_input.type.assert_awaited_once_with("AB12")
        submit.click.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_recognition_falls_through(self):
        page = make_page({
            SLIDER_WRAPPER_SELECTOR: element(),
            TEXT_CHALLENGE_IMAGE_SELECTOR: element(),
        })
        solver = make_solver(make_classifier(), recognizer=StaticTextRecognizer(""))

        with pytest.raises(ChallengeExhausted):
            await solver.solve(page)

    @pytest.mark.asyncio
    async def test_manual_window_solved_by_operator(self):
        page = make_page({})
        classifier = make_classifier([PageClass.CHALLENGE, PageClass.RESULTS])
        solver = make_solver(
            classifier,
            interactive=True,
            manual_window_seconds=6,
            manual_poll_seconds=2,
            page_timeout_ms=45000,
        )

        challenge = await solver.solve(page)

        assert challenge.strategy == SolveStrategy.MANUAL
        timeouts = [c.args[0] for c in page.set_default_timeout.call_args_list]
        assert timeouts == [0, 45000]

    @pytest.mark.asyncio
    async def test_manual_window_elapses(self):
        page = make_page({})
        classifier = make_classifier(PageClass.CHALLENGE)
        sleep = AsyncMock()
        solver = make_solver(
            classifier,
            interactive=True,
            manual_window_seconds=6,
            manual_poll_seconds=2,
            sleep=sleep,
        )

        with pytest.raises(ChallengeExhausted):
            await solver.solve(page)

        assert classifier.classify.await_count == 3
        assert page.set_default_timeout.call_args_list[-1].args == (60000,)

    @pytest.mark.asyncio
    async def test_manual_window_skipped_when_not_interactive(self):
        page = make_page({})
        classifier = make_classifier(PageClass.CHALLENGE)
        solver = make_solver(classifier, interactive=False)

        with pytest.raises(ChallengeExhausted):
            await solver.solve(page)

        page.set_default_timeout.assert_not_called()


class TestRecognizers:

    def test_get_recognizer(self):
        assert get_recognizer(None) is None
        assert isinstance(get_recognizer("tesseract"), TesseractRecognizer)
        assert isinstance(get_recognizer("static", text="x"), StaticTextRecognizer)

    def test_get_recognizer_unknown(self):
        with pytest.raises(ValueError, match="Unknown recognizer"):
            get_recognizer("nonexistent")

    def test_from_config(self):
        config = CrawlerConfig(solver_max_attempts=2, manual_window_seconds=30)
        solver = SliderCaptchaSolver.from_config(config)
        assert solver.max_attempts == 2
        assert solver.manual_window_seconds == 30
        assert solver.recognizer is None
