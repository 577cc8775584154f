"""Action pricing and SMS/campaign estimates."""

import pytest

from points_ledger.core.exceptions import ValidationError
from points_ledger.services.pricing_service import (
    ActionType,
    calculate_sms_credits,
    estimate_campaign_cost,
    get_action_cost,
)


class TestActionCost:
    @pytest.mark.parametrize(
        ("action", "count", "expected"),
        [
            (ActionType.SMS_SENT, 1, 1),
            (ActionType.AI_RESPONSE, 1, 2),
            (ActionType.DOCUMENT_UPLOAD, 2, 10),
            (ActionType.BULK_MESSAGE, 25, 50),
            (ActionType.FLOW_CREATION, 1, 15),
        ],
    )
    def test_costs(self, action, count, expected):
        assert get_action_cost(action, count) == expected

    @pytest.mark.parametrize("count", [0, -1, True])
    def test_invalid_count(self, count):
        with pytest.raises(ValidationError):
            get_action_cost(ActionType.SMS_SENT, count)


class TestSmsCredits:
    @pytest.mark.parametrize(
        ("length", "credits"),
        [(0, 0), (1, 1), (140, 1), (141, 2), (280, 2), (281, 3), (1000, 3)],
    )
    def test_text_tiers(self, length, credits):
        cost = calculate_sms_credits("x" * length)

        assert cost.credits == credits
        assert cost.segments == credits
        assert cost.character_count == length
        assert cost.has_media is False

    def test_media_adds_six_each(self):
        cost = calculate_sms_credits("Hello!", media_count=2)

        assert cost.credits == 13
        assert cost.has_media is True
        assert cost.breakdown == "1 credit (6 chars, 1 segment) + 12 credits (2 photos)"

    def test_empty_message(self):
        assert calculate_sms_credits("").breakdown == "0 credits"

    def test_negative_media(self):
        with pytest.raises(ValidationError):
            calculate_sms_credits("hi", media_count=-1)


class TestCampaignEstimate:
    def test_estimate(self):
        estimate = estimate_campaign_cost("x" * 200, lead_count=50, media_count=1)

        assert estimate.credits_per_message == 8
        assert estimate.total_credits == 400
        assert estimate.total_leads == 50
        assert estimate.breakdown == "50 leads x 8 credits = 400 total credits"

    def test_negative_leads(self):
        with pytest.raises(ValidationError):
            estimate_campaign_cost("hi", lead_count=-1)
