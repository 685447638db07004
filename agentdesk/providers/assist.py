"""Agent-assist helpers layered on the provider gateway.

Rephrasing, summaries, sentiment and categorisation are plain chat
completions with a fixed prompt; the helpers below build those prompts and
normalise the vendor's free text answer.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from ..conversations.repository import ConversationStore
from ..conversations.schemas import Conversation, ConversationMessage
from ..errors import ConversationNotFoundError
from . import schemas
from .gateway import ProviderGateway

logger = logging.getLogger(__name__)

REPHRASE_STYLES: dict[str, str] = {
    "professional": "in a professional and courteous tone",
    "friendly": "in a warm and friendly tone",
    "formal": "in a formal business tone",
    "casual": "in a casual and conversational tone",
    "concise": "more concisely while keeping the key points",
    "detailed": "with more detail and explanation",
}

CONVERSATION_CATEGORIES = (
    "technical_support",
    "billing",
    "general_inquiry",
    "complaint",
    "feature_request",
    "bug_report",
    "account_issue",
    "refund_request",
    "product_question",
    "integration_help",
)

SENTIMENTS = ("positive", "negative", "neutral")

SUMMARY_INSTRUCTION = (
    "Summarize this customer support conversation in 2-3 sentences, "
    "focusing on the main issue and resolution."
)

_SENTIMENT_WORD = re.compile(r"\b(" + "|".join(SENTIMENTS) + r")\b", re.I)


# ---------------------------------------------------------------------------
# Prompt builders


def format_transcript(messages: Iterable[ConversationMessage]) -> str:
    """``Customer: ...`` / ``Agent: ...`` lines, oldest first."""

    return "\n".join(
        f"{'Agent' if m.direction == 'outgoing' else 'Customer'}: {m.content}" for m in messages
    )


def build_rephrase_prompt(text: str, style: str) -> str:
    try:
        instruction = REPHRASE_STYLES[style]
    except KeyError:
        raise ValueError(
            f"Invalid style '{style}'. Supported: {', '.join(REPHRASE_STYLES)}"
        ) from None
    return (
        f"Please rephrase the following text {instruction}. Return only the rephrased text "
        f"without any additional commentary:\n\n{text}"
    )


def build_summary_messages(transcript: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SUMMARY_INSTRUCTION},
        {"role": "user", "content": transcript},
    ]


def build_sentiment_prompt(text: str) -> str:
    return (
        "Analyze the sentiment of this text and return only one word: positive, negative, "
        f"or neutral.\n\nText: {text}"
    )


def build_category_prompt(transcript: str, categories: Sequence[str]) -> str:
    return (
        f"Categorize this conversation into one of these categories: {', '.join(categories)}. "
        f"Return only the category name.\n\nConversation:\n{transcript}"
    )


# ---------------------------------------------------------------------------
# Answer parsing


def parse_sentiment(reply: str) -> str:
    """First sentiment word in ``reply``, or ``"unknown"``."""

    match = _SENTIMENT_WORD.search(reply or "")
    return match.group(1).lower() if match else "unknown"


def sentiment_confidence(sentiment: str) -> str:
    if sentiment in ("positive", "negative"):
        return "high"
    if sentiment == "neutral":
        return "medium"
    return "low"


def parse_category(reply: str, categories: Sequence[str]) -> str | None:
    """Map the vendor's answer onto one of ``categories``.

    Accepts ``"Billing."`` or ``"feature request"`` style answers; returns
    ``None`` when nothing in the reply names a known category.
    """

    normalised = re.sub(r"[\s-]+", "_", (reply or "").strip().strip(".\"'`").lower())
    if normalised in categories:
        return normalised
    for category in categories:
        if category in normalised:
            return category
    return None


# ---------------------------------------------------------------------------
# Service


class AssistService:
    """Run agent-assist operations for one account through the gateway."""

    def __init__(
        self,
        account_id: int,
        gateway: ProviderGateway,
        conversations: ConversationStore,
    ) -> None:
        self.account_id = account_id
        self._gateway = gateway
        self._conversations = conversations

    def _conversation(self, conversation_id: int) -> Conversation:
        conversation = self._conversations.get_conversation(conversation_id)
        if conversation is None or conversation.account_id != self.account_id:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def _transcript(self, conversation_id: int) -> str:
        self._conversation(conversation_id)
        return format_transcript(self._conversations.list_messages(conversation_id))

    def rephrase_text(
        self, text: str, *, style: str = "professional", provider: str | None = None
    ) -> schemas.RephraseResponse:
        result = self._gateway.text_completion(build_rephrase_prompt(text, style), provider=provider)
        return schemas.RephraseResponse(
            original_text=text,
            rephrased_text=result.content.strip(),
            style=style,
            provider=result.provider,
            model=result.model,
        )

    def summarize_conversation(
        self, conversation_id: int, *, provider: str | None = None
    ) -> schemas.SummaryResponse:
        transcript = self._transcript(conversation_id)
        result = self._gateway.chat_completion(build_summary_messages(transcript), provider=provider)
        return schemas.SummaryResponse(
            conversation_id=conversation_id,
            summary=result.content.strip(),
            provider=result.provider,
            model=result.model,
        )

    def extract_sentiment(self, text: str, *, provider: str | None = None) -> schemas.SentimentResponse:
        result = self._gateway.text_completion(build_sentiment_prompt(text), provider=provider)
        sentiment = parse_sentiment(result.content)
        if sentiment == "unknown":
            logger.warning("Unrecognised sentiment answer from %s: %r", result.provider, result.content)
        return schemas.SentimentResponse(
            text=text, sentiment=sentiment, confidence=sentiment_confidence(sentiment)
        )

    def categorize_conversation(
        self,
        conversation_id: int,
        *,
        categories: Sequence[str] | None = None,
        provider: str | None = None,
    ) -> schemas.CategoryResponse:
        available = list(categories or CONVERSATION_CATEGORIES)
        transcript = self._transcript(conversation_id)
        result = self._gateway.text_completion(build_category_prompt(transcript, available), provider=provider)
        return schemas.CategoryResponse(
            conversation_id=conversation_id,
            category=parse_category(result.content, available),
            raw_answer=result.content.strip(),
            available_categories=available,
        )

    def bulk_operations(
        self,
        operation: schemas.BulkOperation,
        conversation_ids: Iterable[int],
        *,
        provider: str | None = None,
    ) -> schemas.BulkOperationResponse:
        """Apply ``operation`` to each conversation; one failure never stops the rest."""

        results: list[schemas.BulkOperationItem] = []
        for conversation_id in conversation_ids:
            try:
                results.append(self._bulk_item(operation, conversation_id, provider))
            except Exception as exc:
                logger.warning("Bulk %s failed for conversation %s: %s", operation, conversation_id, exc)
                results.append(schemas.BulkOperationItem(conversation_id=conversation_id, error=str(exc)))
        return schemas.BulkOperationResponse(
            operation=operation,
            results=results,
            processed_count=sum(1 for item in results if item.error is None),
        )

    def _bulk_item(
        self, operation: schemas.BulkOperation, conversation_id: int, provider: str | None
    ) -> schemas.BulkOperationItem:
        if operation == "summarize":
            summary = self.summarize_conversation(conversation_id, provider=provider)
            return schemas.BulkOperationItem(conversation_id=conversation_id, summary=summary.summary)
        if operation == "categorize":
            category = self.categorize_conversation(conversation_id, provider=provider)
            return schemas.BulkOperationItem(conversation_id=conversation_id, category=category.category)
        # sentiment of the latest customer message
        self._conversation(conversation_id)
        latest = self._conversations.list_messages(conversation_id, direction="incoming", limit=1)
        if not latest:
            return schemas.BulkOperationItem(conversation_id=conversation_id, error="No customer messages")
        sentiment = self.extract_sentiment(latest[0].content, provider=provider)
        return schemas.BulkOperationItem(conversation_id=conversation_id, sentiment=sentiment.sentiment)