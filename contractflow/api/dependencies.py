"""FastAPI dependencies wiring repositories, clients and services per request."""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from contractflow.core.config import settings
from contractflow.core.database import get_async_session
from contractflow.core.langfuse_client import LangfuseClient
from contractflow.core.llm_client import GroqChatClient
from contractflow.repositories.contract_repository import ContractRepository
from contractflow.repositories.provider_repository import ProviderRepository
from contractflow.repositories.review_repository import ReviewTaskRepository
from contractflow.repositories.workflow_repository import WorkflowRepository
from contractflow.services.extraction.orchestrator import ExtractionOrchestrator
from contractflow.services.extraction.prompt_cache import PromptCache
from contractflow.services.pipeline.contract_pipeline import ContractPipeline
from contractflow.services.pipeline.pdf_parser import PdfTextParser
from contractflow.services.pipeline.pdf_storage import PdfStorage
from contractflow.services.provider_registry.config_resolver import ProviderConfigResolver
from contractflow.services.review.review_task_manager import ReviewTaskManager
from contractflow.services.workflow.state_machine import WorkflowStateMachine


def build_langfuse_client() -> LangfuseClient:
    return LangfuseClient(
        public_key=settings.langfuse.public_key,
        secret_key=settings.langfuse.secret_key,
        base_url=settings.langfuse.base_url,
        timeout=settings.langfuse.timeout,
    )


def build_chat_model() -> GroqChatClient:
    return GroqChatClient(
        api_key=settings.llm.groq_api_key,
        api_url=settings.llm.groq_api_url,
        model=settings.llm.groq_model,
        timeout=settings.llm.timeout,
    )


def build_prompt_cache(source: LangfuseClient) -> PromptCache:
    return PromptCache(source, ttl_seconds=settings.langfuse.cache_ttl_seconds)


def build_contract_pipeline(
    session: AsyncSession,
    prompt_cache: PromptCache,
    langfuse_client: LangfuseClient,
) -> ContractPipeline:
    """Assemble the pipeline and its collaborators around one session.

    Used by API requests and by Temporal activities.
    """
    state_machine = WorkflowStateMachine(WorkflowRepository(session))
    contract_repo = ContractRepository(session)
    return ContractPipeline(
        state_machine=state_machine,
        config_resolver=ProviderConfigResolver(ProviderRepository(session)),
        extraction=ExtractionOrchestrator(prompt_cache, build_chat_model(), tracer=langfuse_client),
        review_manager=ReviewTaskManager(ReviewTaskRepository(session), contract_repo, state_machine),
        contract_repository=contract_repo,
        pdf_parser=PdfTextParser(),
        pdf_storage=PdfStorage(),
    )


def get_langfuse_client(request: Request) -> LangfuseClient:
    client = getattr(request.app.state, "langfuse_client", None)
    if client is None:
        client = build_langfuse_client()
        request.app.state.langfuse_client = client
    return client


def get_prompt_cache(
    request: Request,
    langfuse_client: Annotated[LangfuseClient, Depends(get_langfuse_client)],
) -> PromptCache:
    """Process-wide prompt cache kept on ``app.state``."""
    cache = getattr(request.app.state, "prompt_cache", None)
    if cache is None:
        cache = build_prompt_cache(langfuse_client)
        request.app.state.prompt_cache = cache
    return cache


async def get_state_machine(
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> WorkflowStateMachine:
    return WorkflowStateMachine(WorkflowRepository(session))


async def get_contract_repository(
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> ContractRepository:
    return ContractRepository(session)


async def get_review_manager(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    state_machine: Annotated[WorkflowStateMachine, Depends(get_state_machine)],
) -> ReviewTaskManager:
    return ReviewTaskManager(ReviewTaskRepository(session), ContractRepository(session), state_machine)


async def get_contract_pipeline(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    prompt_cache: Annotated[PromptCache, Depends(get_prompt_cache)],
    langfuse_client: Annotated[LangfuseClient, Depends(get_langfuse_client)],
) -> ContractPipeline:
    return build_contract_pipeline(session, prompt_cache, langfuse_client)
