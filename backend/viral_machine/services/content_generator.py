"""
Content generator interface: script, titles, description and hashtags for a niche.

OpenAIContentGenerator calls the chat-completions API; TemplateContentGenerator
is the offline fallback used whenever AI generation fails or is not configured.
"""
from __future__ import annotations

import json
import logging
import random
from abc import ABC, abstractmethod

import httpx

from viral_machine.errors import ConfigurationError, TransientError
from viral_machine.settings import get_settings

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class GeneratedContent:
    """Result of content generation for one video."""

    def __init__(
        self,
        script: str,
        titles: list[str],
        description: str,
        hashtags: list[str],
        *,
        niche: str,
        kind: str = "short",
        topic: str | None = None,
        generated_by: str = "stub",
    ):
        self.script = script
        self.titles = titles
        self.description = description
        self.hashtags = hashtags
        self.niche = niche
        self.kind = kind
        self.topic = topic
        self.generated_by = generated_by

    @property
    def title(self) -> str:
        return self.titles[0] if self.titles else self.niche


class ContentGenerator(ABC):
    """Abstract generator. Implement `generate` to plug in a model."""

    @abstractmethod
    async def generate(self, niche: str, kind: str = "short") -> GeneratedContent:
        ...


FALLBACK_TEMPLATES: dict[str, dict[str, dict[str, list[str]]]] = {
    "Motivational": {
        "short": {
            "topics": [
                "The Power of Persistence",
                "Why Most People Quit Too Early",
                "One Habit That Changed Everything",
                "The Secret to Staying Motivated",
                "How to Overcome Self-Doubt",
            ],
            "scripts": [
                "Did you know that most successful people failed multiple times before achieving greatness? "
                "The difference is they never gave up. Start today, keep going, and success will follow.",
                "Stop waiting for the perfect moment. The perfect moment is now. Take action, make mistakes, "
                "learn, and grow. Your future self will thank you.",
                "Success is not about being the best. It's about being consistent. Show up every day, put in "
                "the work, and watch your dreams become reality.",
            ],
            "titles": [
                "This Will Change Your Life Forever",
                "The #1 Secret Successful People Know",
                "Why You Should Never Give Up",
                "How to Stay Motivated Every Single Day",
            ],
            "hashtags": ["#motivation", "#success", "#mindset", "#inspiration", "#nevergiveup"],
        },
        "long": {
            "topics": ["Deep Dive: The Psychology of Success"],
            "scripts": [
                "In this video, we explore the fundamental principles that separate successful people "
                "from those who struggle..."
            ],
            "titles": ["The Complete Guide to Success Mindset"],
            "hashtags": ["#motivation", "#success", "#selfimprovement"],
        },
    },
    "Facts & Info": {
        "short": {
            "topics": ["Amazing Facts You Didn't Know", "Mind-Blowing Science Facts", "Historical Mysteries"],
            "scripts": [
                "Did you know? The human brain generates enough electricity to power a small light bulb. "
                "Our minds are truly incredible machines."
            ],
            "titles": ["Facts That Will Blow Your Mind", "Science Facts That Sound Fake But Are True"],
            "hashtags": ["#facts", "#science", "#amazing", "#mindblowing"],
        },
    },
    "Finance": {
        "short": {
            "topics": ["Side Hustle Ideas", "Passive Income Strategies", "Money Mindset"],
            "scripts": [
                "Want to make extra income? Here are 3 proven strategies that actually work. "
                "Number 2 is my personal favorite."
            ],
            "titles": ["How to Make Money Online", "Side Hustles That Actually Work"],
            "hashtags": ["#finance", "#money", "#sidehustle", "#passiveincome"],
        },
    },
    "Psychology": {
        "short": {
            "topics": ["Psychology Tricks", "Human Behavior Explained", "Mental Hacks"],
            "scripts": [
                "Want to read people like a book? This simple psychology trick will change how you "
                "understand human behavior forever."
            ],
            "titles": ["Psychology Hacks That Actually Work", "Read Anyone Like a Book"],
            "hashtags": ["#psychology", "#mindtricks", "#humanbehavior"],
        },
    },
}


class TemplateContentGenerator(ContentGenerator):
    """Offline generator built from canned per-niche templates."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    async def generate(self, niche: str, kind: str = "short") -> GeneratedContent:
        return self.generate_sync(niche, kind)

    def generate_sync(self, niche: str, kind: str = "short") -> GeneratedContent:
        logger.info(f"[content] Using fallback generator (niche={niche}, kind={kind})")
        niche_templates = FALLBACK_TEMPLATES.get(niche) or FALLBACK_TEMPLATES["Motivational"]
        templates = niche_templates.get(kind) or niche_templates["short"]

        topic = self.rng.choice(templates["topics"])
        script = self.rng.choice(templates["scripts"])
        title_base = self.rng.choice(templates["titles"])

        titles = [
            title_base,
            f"{topic} - Must Watch!",
            f"The Truth About {topic}",
            f"{topic} Explained",
            f"Why {topic} Matters",
        ]
        niche_tag = "#" + "".join(niche.split())
        description = (
            f"{script}\n\n{topic}\n\n"
            f"Watch this video to learn more about {niche.lower()}!\n\n"
            f"Subscribe for more content\n\n"
            f"{niche_tag} {' '.join(templates['hashtags'])}"
        )
        return GeneratedContent(
            script=script,
            titles=titles,
            description=description,
            hashtags=list(templates["hashtags"]),
            niche=niche,
            kind=kind,
            topic=topic,
            generated_by="fallback",
        )


_SYSTEM_PROMPT = (
    "You write scripts for faceless YouTube videos. Reply with a JSON object with keys "
    "topic (string), script (string), titles (list of 5 strings), description (string), "
    "hashtags (list of strings starting with #)."
)


class OpenAIContentGenerator(ContentGenerator):
    """Chat-completions backed generator."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self.timeout = timeout
        self.transport = transport

    async def generate(self, niche: str, kind: str = "short") -> GeneratedContent:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY missing")

        length = "45-60 second YouTube Short" if kind == "short" else "8-10 minute YouTube video"
        body = {
            "model": self.model,
            "response_format": {"type": "json_object"},
            "temperature": 0.9,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": f"Niche: {niche}. Format: {length}. Make it original and engaging."},
            ],
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(
                OPENAI_CHAT_URL,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"OpenAI API {resp.status_code}: {resp.text[:200]}", code="rate_limit")
        if resp.status_code >= 400:
            raise RuntimeError(f"OpenAI API error {resp.status_code}: {resp.text[:200]}")

        try:
            raw = resp.json()["choices"][0]["message"]["content"]
            data = json.loads(raw)
            titles = [str(t) for t in data["titles"] if str(t).strip()]
            script = str(data["script"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RuntimeError(f"OpenAI returned unusable content: {e}") from e
        if not titles or not script.strip():
            raise RuntimeError("OpenAI returned empty script or titles")

        return GeneratedContent(
            script=script,
            titles=titles,
            description=str(data.get("description") or ""),
            hashtags=[str(h) for h in data.get("hashtags") or []],
            niche=niche,
            kind=kind,
            topic=data.get("topic"),
            generated_by=self.model,
        )


def default_content_generator() -> ContentGenerator:
    """OpenAI when a key is configured, templates otherwise."""
    if get_settings().openai_api_key:
        return OpenAIContentGenerator()
    logger.warning("[content] OPENAI_API_KEY not set - using fallback generator")
    return TemplateContentGenerator()
