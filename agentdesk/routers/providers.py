"""AI provider status, configuration, chat completion and agent-assist API router."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter

from ..config_store import PostgresConfigStore
from ..conversations.repository import PostgresConversationStore
from ..providers import schemas
from ..providers.assist import AssistService
from ..providers.gateway import ProviderGateway
from .deps import get_conn, http_error

router = APIRouter(prefix="/api/accounts/{account_id}/ai", tags=["providers"])


@contextmanager
def _service_context(account_id: int) -> Iterator[ProviderGateway]:
    conn = get_conn()
    try:
        gateway = ProviderGateway(PostgresConfigStore(conn))
        yield gateway
        conn.commit()
    except Exception as exc:
        conn.rollback()
        raise http_error(exc) from exc
    finally:
        conn.close()


@contextmanager
def _assist_context(account_id: int) -> Iterator[AssistService]:
    conn = get_conn()
    try:
        gateway = ProviderGateway(PostgresConfigStore(conn))
        yield AssistService(account_id, gateway, PostgresConversationStore(conn))
        conn.commit()
    except Exception as exc:
        conn.rollback()
        raise http_error(exc) from exc
    finally:
        conn.close()


@router.get("/providers", response_model=schemas.ProviderStatusList)
def list_providers(account_id: int) -> schemas.ProviderStatusList:
    with _service_context(account_id) as gateway:
        return gateway.provider_status()


@router.put("/providers/{provider}", response_model=schemas.ProviderStatus)
def configure_provider(
    account_id: int, provider: str, payload: schemas.ProviderConfigure
) -> schemas.ProviderStatus:
    with _service_context(account_id) as gateway:
        return gateway.configure_provider(
            provider, api_key=payload.api_key, model=payload.model, make_default=payload.make_default
        )


@router.post("/providers/{provider}/test", response_model=schemas.ConnectionTestResult)
def test_provider(account_id: int, provider: str, model: str | None = None) -> schemas.ConnectionTestResult:
    with _service_context(account_id) as gateway:
        return gateway.test_connection(provider, model)


@router.post("/chat-completion", response_model=schemas.ChatCompletionResponse)
def chat_completion(account_id: int, payload: schemas.ChatCompletionRequest) -> schemas.ChatCompletionResponse:
    with _service_context(account_id) as gateway:
        result = gateway.chat_completion(
            [message.model_dump() for message in payload.messages],
            provider=payload.provider,
            model=payload.model,
            temperature=payload.temperature,
            max_tokens=payload.max_tokens,
        )
    return schemas.ChatCompletionResponse(
        content=result.content, provider=result.provider, model=result.model, usage=result.usage
    )


# ---------------------------------------------------------------------------
# Agent assist


@router.post("/rephrase", response_model=schemas.RephraseResponse)
def rephrase_text(account_id: int, payload: schemas.RephraseRequest) -> schemas.RephraseResponse:
    with _assist_context(account_id) as assist:
        return assist.rephrase_text(payload.text, style=payload.style, provider=payload.provider)


@router.post("/sentiment", response_model=schemas.SentimentResponse)
def analyze_sentiment(account_id: int, payload: schemas.SentimentRequest) -> schemas.SentimentResponse:
    with _assist_context(account_id) as assist:
        return assist.extract_sentiment(payload.text, provider=payload.provider)


@router.post("/summarize", response_model=schemas.SummaryResponse)
def summarize_conversation(
    account_id: int, payload: schemas.ConversationAssistRequest
) -> schemas.SummaryResponse:
    with _assist_context(account_id) as assist:
        return assist.summarize_conversation(payload.conversation_id, provider=payload.provider)


@router.post("/categorize", response_model=schemas.CategoryResponse)
def categorize_conversation(
    account_id: int, payload: schemas.ConversationAssistRequest
) -> schemas.CategoryResponse:
    with _assist_context(account_id) as assist:
        return assist.categorize_conversation(
            payload.conversation_id, categories=payload.categories, provider=payload.provider
        )


@router.post("/bulk-operations", response_model=schemas.BulkOperationResponse)
def bulk_operations(account_id: int, payload: schemas.BulkOperationRequest) -> schemas.BulkOperationResponse:
    with _assist_context(account_id) as assist:
        return assist.bulk_operations(payload.operation, payload.conversation_ids, provider=payload.provider)
