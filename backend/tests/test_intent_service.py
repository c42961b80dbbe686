"""
Tests for campaign-creation intent detection.
"""

import pytest

from adspirer.services.intent_service import (
    CAMPAIGN_CREATION_PATTERNS,
    detect_campaign_creation_intent,
    match_campaign_creation_intent,
)


@pytest.mark.parametrize("message", [
    "I want to create a new Amazon campaign",
    "Can you create a campaign for my shoes?",
    "set up a new sponsored products campaign",
    "Let's launch another Google search campaign",
    "please start a campain for the summer sale",
    "build an ad campaing for my new product",
    "help me create something for Prime Day",
    "How do I create ads for my brand?",
])
def test_detects_creation_requests(message):
    assert detect_campaign_creation_intent(message) is True


@pytest.mark.parametrize("message", [
    "What are the metrics for my campaign?",
    "Show me my recent campaign performance",
    "Which campaign had the best ROAS last month?",
    "Pause my worst campaign",
    "",
])
def test_ignores_other_messages(message):
    assert detect_campaign_creation_intent(message) is False


def test_match_returns_first_matching_pattern():
    matched = match_campaign_creation_intent("I would like to create a brand campaign")
    # verb + campaign is tried before the "I would like to create" phrasing
    assert matched == CAMPAIGN_CREATION_PATTERNS[0].pattern
    assert match_campaign_creation_intent("I would like to create something") == CAMPAIGN_CREATION_PATTERNS[1].pattern


def test_match_none_for_plain_question():
    assert match_campaign_creation_intent("How much did I spend yesterday?") is None
