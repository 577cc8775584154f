"""Pricing Service - point costs of gated actions.

Pricing:
- Per action: see ACTION_COSTS
- SMS text: 1-140 characters 1 credit, 141-280 2 credits, 281+ 3 credits
- Media: 6 credits per attachment
"""

from dataclasses import dataclass
from enum import Enum

from points_ledger.core.exceptions import ValidationError


class ActionType(str, Enum):
    """Paid actions gated by the ledger."""

    SMS_SENT = "sms_sent"  # single 1-to-1 text message
    AI_RESPONSE = "ai_response"  # AI reply / smart reply
    DOCUMENT_UPLOAD = "document_upload"  # upload with AI processing
    BULK_MESSAGE = "bulk_message"  # per contact in a mass send
    FLOW_CREATION = "flow_creation"


ACTION_COSTS: dict[ActionType, int] = {
    ActionType.SMS_SENT: 1,
    ActionType.AI_RESPONSE: 2,
    ActionType.DOCUMENT_UPLOAD: 5,
    ActionType.BULK_MESSAGE: 2,
    ActionType.FLOW_CREATION: 15,
}

SEGMENT_LENGTH = 140
MAX_TEXT_CREDITS = 3
MEDIA_CREDITS = 6


@dataclass(frozen=True)
class SmsCost:
    """Credit breakdown for one SMS."""

    credits: int
    segments: int
    character_count: int
    has_media: bool
    media_count: int
    breakdown: str


@dataclass(frozen=True)
class CampaignEstimate:
    credits_per_message: int
    total_credits: int
    total_leads: int
    breakdown: str


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def get_action_cost(action: ActionType, count: int = 1) -> int:
    """Total cost of ``count`` repetitions of ``action``."""
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValidationError("Count must be a positive integer", {"count": count})
    return ACTION_COSTS[action] * count


def describe_action(action: ActionType, count: int = 1) -> str:
    """Transaction description for a priced action."""
    descriptions = {
        ActionType.SMS_SENT: f"SMS sent ({count}x)",
        ActionType.AI_RESPONSE: f"AI response generated ({count}x)",
        ActionType.DOCUMENT_UPLOAD: f"Document uploaded with AI processing ({count}x)",
        ActionType.BULK_MESSAGE: f"Bulk message sent to {count} contact(s)",
        ActionType.FLOW_CREATION: f"Flow created ({count}x)",
    }
    return descriptions[action]


def calculate_sms_credits(message: str, media_count: int = 0) -> SmsCost:
    """Credit cost for one SMS with optional media attachments."""
    if media_count < 0:
        raise ValidationError("Media count cannot be negative", {"media_count": media_count})

    character_count = len(message)
    segments = min(-(-character_count // SEGMENT_LENGTH), MAX_TEXT_CREDITS)
    text_credits = segments
    media_credits = media_count * MEDIA_CREDITS

    parts = []
    if text_credits:
        parts.append(
            f"{_plural(text_credits, 'credit')} "
            f"({character_count} chars, {_plural(segments, 'segment')})"
        )
    if media_credits:
        parts.append(f"{_plural(media_credits, 'credit')} ({_plural(media_count, 'photo')})")

    return SmsCost(
        credits=text_credits + media_credits,
        segments=segments,
        character_count=character_count,
        has_media=media_count > 0,
        media_count=media_count,
        breakdown=" + ".join(parts) or "0 credits",
    )


def estimate_campaign_cost(message: str, lead_count: int, media_count: int = 0) -> CampaignEstimate:
    """Estimate the cost of sending ``message`` to ``lead_count`` leads."""
    if lead_count < 0:
        raise ValidationError("Lead count cannot be negative", {"lead_count": lead_count})

    per_message = calculate_sms_credits(message, media_count).credits
    total = per_message * lead_count
    return CampaignEstimate(
        credits_per_message=per_message,
        total_credits=total,
        total_leads=lead_count,
        breakdown=f"{lead_count} leads x {per_message} credits = {total} total credits",
    )
