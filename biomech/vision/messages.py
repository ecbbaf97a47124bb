"""Coaching message catalogue and a seedable picker."""
from __future__ import annotations

import random
from enum import Enum
from typing import Dict, Optional, Tuple

from biomech.core.config import get_settings


class MessageKind(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NEEDS_WORK = "needs_work"
    VALGUS = "valgus"
    ASYMMETRY = "asymmetry"
    TRUNK_LEAN = "trunk_lean"
    DEPTH = "depth"
    TEMPO_FAST = "tempo_fast"
    TEMPO_SLOW = "tempo_slow"
    INCOMPLETE = "incomplete"
    KEEP_GOING = "keep_going"


MESSAGES: Dict[MessageKind, Tuple[str, ...]] = {
    MessageKind.EXCELLENT: ("Perfect rep!", "Excellent technique!", "Great form, keep it up!"),
    MessageKind.GOOD: ("Good rep!", "Nice work, small details left to polish", "Solid, keep that quality"),
    MessageKind.NEEDS_WORK: ("Let's tidy that up next rep", "Focus on control", "Slow down and focus on form"),
    MessageKind.VALGUS: ("Push your knees out", "Keep your knees over your toes", "Don't let your knees cave in"),
    MessageKind.ASYMMETRY: ("Load both sides evenly", "Balance left and right", "Keep your weight centred"),
    MessageKind.TRUNK_LEAN: ("Keep your chest up", "Stay more upright", "Don't lean too far forward"),
    MessageKind.DEPTH: ("Go a little deeper", "Use the full range", "A bit further down"),
    MessageKind.TEMPO_FAST: ("Slow down", "Take it more controlled", "Don't rush it"),
    MessageKind.TEMPO_SLOW: ("You can speed up slightly", "Keep a steady rhythm"),
    MessageKind.INCOMPLETE: ("Complete the whole movement", "That rep was not quite complete"),
    MessageKind.KEEP_GOING: ("Keep going!", "You've got this!", "Nice and steady"),
}


class MessagePicker:
    """Chooses phrasing for coaching messages.

    Backed by its own ``random.Random`` so a fixed seed gives repeatable output.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = random.Random(get_settings().message_seed if seed is None else seed)

    def pick(self, kind: MessageKind) -> str:
        return self._rng.choice(MESSAGES[kind])

    def chance(self, probability: float) -> bool:
        return self._rng.random() < probability
