from __future__ import annotations
import logging
import random
from typing import Awaitable, Optional, Protocol

from .models import GateVerdict

logger = logging.getLogger(__name__)

REJECTION_MESSAGES = (
    'Nice try, but that song is too spicy for this chat! 🌶️',
    'That request made my circuits tingle... in a bad way! ⚡',
    "I'm a bot, not a fool! Try again with something less... problematic 😅",
    "Even my AI brain knows that's not appropriate! 🤖",
    'That song request just got yeeted into the void 🕳️',
    "I'd play that... if I wanted to get banned! 😬",
)

SCREEN_PROMPT = """Analyze this text for ONLY these two specific criteria:
1. Explicitly racist content/slurs (NOT regular rap lyrics or mentions of race)
2. Known troll/meme songs (ONLY obvious ones like Rick Roll, Baby Shark, etc.)

Text to analyze: "{text}"

IMPORTANT:
- DO allow all rap music (including explicit content)
- DO allow songs about violence, drugs, or adult themes
- DO allow any real song that isn't explicitly racist
- ONLY block obvious troll songs or explicitly racist content

Respond ONLY with "true" if it should be allowed (which is most cases) or "false" if it contains explicit racism or is a known troll song."""


class TextClassifier(Protocol):
    def generate_response(self, prompt: str) -> Awaitable[str]: ...


class ContentGate:
    def __init__(self, classifier: TextClassifier, *, rng: Optional[random.Random] = None):
        self.classifier = classifier
        self.rng = rng or random.Random()

    def random_rejection(self) -> str:
        return self.rng.choice(REJECTION_MESSAGES)

    async def screen(self, text: str) -> GateVerdict:
        """Ask the classifier whether ``text`` may be played.

        Fails open: a classifier error or a reply other than ``true``/``false``
        allows the text and is logged.
        """
        try:
            reply = await self.classifier.generate_response(SCREEN_PROMPT.format(text=text))
        except Exception as exc:
            logger.warning('Content screening failed for %r; allowing: %s', text, exc)
            return GateVerdict(allowed=True)
        verdict = (reply or '').strip().lower()
        if verdict == 'true':
            return GateVerdict(allowed=True)
        if verdict == 'false':
            logger.info('Content screening rejected %r', text)
            return GateVerdict(allowed=False, message=self.random_rejection())
        logger.warning('Unparsable screening reply %r for %r; allowing', reply, text)
        return GateVerdict(allowed=True)
