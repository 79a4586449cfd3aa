"""User-agent classification for Ethicrawler Shield.

Classifies a request's user-agent string as a whitelisted crawler, an AI bot
or unclassified traffic. Matching is a plain case-insensitive substring test;
the AI-bot pattern set deliberately includes generic automation terms
("bot", "http", "api"), so monitoring probes and internal tooling are reported
too.
"""

from enum import Enum
from typing import List, Optional, Sequence

# Legitimate crawlers, never reported.
WHITELISTED_BOTS: List[str] = [
    "Googlebot",
    "Bingbot",
    "Slurp",  # Yahoo
    "DuckDuckBot",
    "Baiduspider",
    "YandexBot",
    "facebookexternalhit",
    "Twitterbot",
    "LinkedInBot",
    "WhatsApp",
    "Applebot",
]

AI_BOT_PATTERNS: List[str] = [
    "GPTBot",
    "ChatGPT",
    "OpenAI",
    "Claude",
    "Anthropic",
    "Bard",
    "Gemini",
    "PaLM",
    "LaMDA",
    "crawler",
    "scraper",
    "spider",
    "bot",
    "python-requests",
    "curl",
    "wget",
    "http",
    "api",
]


class Classification(str, Enum):
    """Outcome of classifying a user-agent."""
    WHITELISTED = "whitelisted"
    AI_BOT = "ai_bot"
    UNCLASSIFIED = "unclassified"


class UserAgentClassifier:
    """Substring matcher over a whitelist and an AI-bot pattern list."""

    def __init__(
        self,
        whitelisted_bots: Optional[Sequence[str]] = None,
        ai_bot_patterns: Optional[Sequence[str]] = None,
    ):
        """Initialize the classifier.

        Args:
            whitelisted_bots: Crawler identifiers that are never reported
            ai_bot_patterns: Identifiers that mark a client as an AI bot
        """
        self.whitelisted_bots = list(
            WHITELISTED_BOTS if whitelisted_bots is None else whitelisted_bots
        )
        self.ai_bot_patterns = list(
            AI_BOT_PATTERNS if ai_bot_patterns is None else ai_bot_patterns
        )
        # Lowercase once, matching is done on lowercased user-agents
        self._whitelist_lower = [bot.lower() for bot in self.whitelisted_bots]
        self._patterns_lower = [pattern.lower() for pattern in self.ai_bot_patterns]

    def is_whitelisted(self, user_agent: str) -> bool:
        """Check if user-agent belongs to a whitelisted crawler."""
        if not user_agent:
            return False
        user_agent_lower = user_agent.lower()
        return any(bot in user_agent_lower for bot in self._whitelist_lower)

    def is_ai_bot(self, user_agent: str) -> bool:
        """Check if user-agent matches any AI-bot or automation pattern."""
        if not user_agent:
            return False
        user_agent_lower = user_agent.lower()
        return any(pattern in user_agent_lower for pattern in self._patterns_lower)

    def classify(self, user_agent: str) -> Classification:
        """Apply the reporting policy to a user-agent.

        An empty user-agent is insufficient data and is never checked. The
        whitelist is evaluated first and wins over any AI-bot match.

        Args:
            user_agent: Sanitized user-agent string

        Returns:
            Classification of the user-agent
        """
        if not user_agent:
            return Classification.UNCLASSIFIED
        if self.is_whitelisted(user_agent):
            return Classification.WHITELISTED
        if self.is_ai_bot(user_agent):
            return Classification.AI_BOT
        return Classification.UNCLASSIFIED


_default_classifier = UserAgentClassifier()


def is_whitelisted(user_agent: str) -> bool:
    """Check a user-agent against the default whitelist."""
    return _default_classifier.is_whitelisted(user_agent)


def is_ai_bot(user_agent: str) -> bool:
    """Check a user-agent against the default AI-bot patterns."""
    return _default_classifier.is_ai_bot(user_agent)


def classify(user_agent: str) -> Classification:
    """Classify a user-agent with the default pattern lists."""
    return _default_classifier.classify(user_agent)
