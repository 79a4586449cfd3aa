"""Tests for user-agent classification."""

import pytest

from ethicrawler_shield.classifier import (
    AI_BOT_PATTERNS,
    WHITELISTED_BOTS,
    Classification,
    UserAgentClassifier,
    classify,
    is_ai_bot,
    is_whitelisted,
)

from tests.mocks.ethicrawler_mocks import BROWSER_UA, GOOGLEBOT_UA, GPTBOT_UA


class TestWhitelist:
    """Test whitelisted crawler detection."""

    @pytest.mark.parametrize("bot", WHITELISTED_BOTS)
    def test_every_whitelisted_bot_matches(self, bot):
        assert is_whitelisted(f"Mozilla/5.0 (compatible; {bot}/1.0)") is True

    @pytest.mark.parametrize("user_agent", [
        "googlebot/2.1",
        "GOOGLEBOT/2.1",
        "Mozilla/5.0 (compatible; BingBot/2.0)",
        "facebookExternalHit/1.1",
    ])
    def test_matching_is_case_insensitive(self, user_agent):
        assert is_whitelisted(user_agent) is True

    def test_browser_is_not_whitelisted(self):
        assert is_whitelisted(BROWSER_UA) is False

    def test_empty_user_agent(self):
        assert is_whitelisted("") is False


class TestAIBotPatterns:
    """Test AI bot and automation pattern detection."""

    @pytest.mark.parametrize("pattern", AI_BOT_PATTERNS)
    def test_every_pattern_matches(self, pattern):
        assert is_ai_bot(f"Something {pattern} something") is True

    @pytest.mark.parametrize("user_agent", [
        GPTBOT_UA,
        "ClaudeBot/1.0 (+claudebot@anthropic.com)",
        "python-requests/2.31.0",
        "curl/8.4.0",
        "Wget/1.21.4",
        "ChatGPT-User/1.0",
    ])
    def test_known_ai_clients(self, user_agent):
        assert is_ai_bot(user_agent) is True

    def test_generic_terms_are_kept(self):
        """Monitoring probes and API clients are reported too."""
        assert is_ai_bot("UptimeRobot/2.0") is True
        assert is_ai_bot("Go-http-client/1.1") is True
        assert is_ai_bot("my-api-client") is True

    def test_plain_browser_is_not_ai_bot(self):
        assert is_ai_bot("Mozilla/5.0 (X11; Linux x86_64) Gecko/20100101 Firefox/128.0") is False

    def test_empty_user_agent(self):
        assert is_ai_bot("") is False


class TestClassify:
    """Test the reporting policy."""

    def test_ai_bot(self):
        assert classify(GPTBOT_UA) == Classification.AI_BOT

    def test_whitelist_wins_over_ai_patterns(self):
        # Googlebot also contains "bot" and "http"
        assert is_ai_bot(GOOGLEBOT_UA) is True
        assert classify(GOOGLEBOT_UA) == Classification.WHITELISTED

    def test_browser_is_unclassified(self):
        assert classify(BROWSER_UA) == Classification.UNCLASSIFIED

    def test_empty_user_agent_is_never_checked(self):
        classifier = UserAgentClassifier(whitelisted_bots=[""], ai_bot_patterns=[""])
        assert classifier.classify("") == Classification.UNCLASSIFIED

    def test_custom_pattern_lists(self):
        classifier = UserAgentClassifier(
            whitelisted_bots=["FriendlyBot"],
            ai_bot_patterns=["harvester"],
        )
        assert classifier.classify("FriendlyBot/1.0 harvester") == Classification.WHITELISTED
        assert classifier.classify("Harvester/3") == Classification.AI_BOT
        assert classifier.classify(GPTBOT_UA) == Classification.UNCLASSIFIED
