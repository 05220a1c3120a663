"""
Utilities Package.

Provides human-like input simulation, slider challenge solving with OCR and
manual escalation, and the secondary-site login check.
"""

from .human_simulator import (
    DragTrace,
    HumanSimulator,
    HumanSimulatorConfig,
    create_human_simulator,
)

from .captcha_solver import (
    BaseTextRecognizer,
    CaptchaChallenge,
    ChallengeState,
    SliderCaptchaSolver,
    SolveStrategy,
    StaticTextRecognizer,
    TesseractRecognizer,
    get_recognizer,
)

from .login_checker import (
    LoginChecker,
    LoginInfo,
)

__all__ = [
    "DragTrace",
    "HumanSimulator",
    "HumanSimulatorConfig",
    "create_human_simulator",
    "BaseTextRecognizer",
    "CaptchaChallenge",
    "ChallengeState",
    "SliderCaptchaSolver",
    "SolveStrategy",
    "StaticTextRecognizer",
    "TesseractRecognizer",
    "get_recognizer",
    "LoginChecker",
    "LoginInfo",
]
