"""LLM service for Myers Construct.

Provides the LangChain/OpenAI integration used by the estimation client.
"""

from typing import Dict, Any, Optional, List

import structlog
from langchain_openai import ChatOpenAI
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from config.settings import Settings
from config.errors import GenerationUnavailable, ErrorCode
from models.estimate import GroundingSource

logger = structlog.get_logger()

DEFAULT_MODEL = "gpt-4o"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 8192

WEB_SEARCH_TOOL = {"type": "web_search_preview"}

CITATION_ANNOTATION_TYPES = ("url_citation", "citation")


def strip_code_fences(content: str) -> str:
    """Remove a markdown code-fence wrapper (```json ... ```) from model output."""
    content = (content or "").strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def content_text(content: Any) -> str:
    """Flatten an AIMessage content (string or content blocks) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") in ("text", "output_text"):
            parts.append(block.get("text", ""))
    return "".join(parts)


def extract_citations(content: Any) -> List[GroundingSource]:
    """Collect ``{title, uri}`` pairs from web-search citation annotations."""
    if isinstance(content, str):
        return []

    sources: List[GroundingSource] = []
    for block in content or []:
        if not isinstance(block, dict):
            continue
        for annotation in block.get("annotations") or []:
            if not isinstance(annotation, dict):
                continue
            if annotation.get("type") not in CITATION_ANNOTATION_TYPES:
                continue
            uri = annotation.get("url") or annotation.get("uri")
            title = annotation.get("title")
            if uri and title:
                sources.append(GroundingSource(title=title, uri=uri))
    return sources


class LLMService:
    """Service for LLM operations using LangChain.

    Provides a wrapper around ChatOpenAI with token tracking
    and error handling.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        api_key: Optional[str] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        """Initialize LLMService.

        Args:
            model: Model name.
            temperature: Sampling temperature.
            api_key: OpenAI API key. When None, ChatOpenAI reads OPENAI_API_KEY.
            max_tokens: Max output tokens.
            timeout: Request timeout in seconds.
        """
        self.model = model or DEFAULT_MODEL
        self.temperature = temperature if temperature is not None else DEFAULT_TEMPERATURE
        self.api_key = api_key
        self.max_tokens = max_tokens or DEFAULT_MAX_TOKENS
        self.timeout = timeout

        self._client: Optional[ChatOpenAI] = None
        self._total_tokens_used = 0

    @classmethod
    def from_settings(cls, config: Settings) -> "LLMService":
        """Build an LLMService from an explicit configuration."""
        return cls(
            model=config.llm_model,
            temperature=config.llm_temperature,
            api_key=config.openai_api_key,
            max_tokens=config.llm_max_output_tokens,
            timeout=config.synthesis_timeout_seconds,
        )

    @property
    def client(self) -> ChatOpenAI:
        """Get LangChain ChatOpenAI client (lazy initialization)."""
        if self._client is None:
            self._client = ChatOpenAI(
                model=self.model,
                temperature=self.temperature,
                api_key=self.api_key,
                max_tokens=self.max_tokens,
                timeout=self.timeout
            )
        return self._client

    @property
    def total_tokens_used(self) -> int:
        """Get total tokens used across all calls."""
        return self._total_tokens_used

    def _track_tokens(self, response: Any) -> int:
        tokens_used = 0
        usage = getattr(response, "usage_metadata", None)
        if isinstance(usage, dict):
            tokens_used = usage.get("total_tokens", 0) or 0
        elif hasattr(response, "response_metadata"):
            tokens_used = response.response_metadata.get("token_usage", {}).get("total_tokens", 0) or 0
        self._total_tokens_used += tokens_used
        return tokens_used

    async def generate(
        self,
        messages: List[BaseMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        response_format: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Generate a response from the LLM.

        Args:
            messages: List of LangChain messages.
            tools: Provider-side tools to bind (e.g. web search).
            response_format: Structured-output contract.

        Returns:
            Dict with text content, citations and token usage.

        Raises:
            GenerationUnavailable: If the LLM call fails.
        """
        try:
            runnable = self.client.bind_tools(tools) if tools else self.client
            kwargs = {}
            if response_format:
                kwargs["response_format"] = response_format

            response = await runnable.ainvoke(messages, **kwargs)

            tokens_used = self._track_tokens(response)
            text = content_text(response.content)

            logger.info(
                "llm_generated",
                model=self.model,
                tokens_used=tokens_used,
                content_length=len(text)
            )

            return {
                "content": text,
                "citations": extract_citations(response.content),
                "tokens_used": tokens_used
            }

        except Exception as e:
            error_msg = str(e)
            lowered = error_msg.lower()

            if "rate_limit" in lowered or "rate limit" in lowered:
                code = ErrorCode.LLM_RATE_LIMIT
                message = "OpenAI rate limit exceeded"
            elif "context_length" in lowered or "maximum context" in lowered:
                code = ErrorCode.LLM_CONTEXT_TOO_LONG
                message = "Input too long for model context"
            else:
                code = ErrorCode.GENERATION_UNAVAILABLE
                message = f"LLM generation failed: {error_msg}"

            logger.error("llm_generation_failed", model=self.model, code=code, error=error_msg[:300])
            raise GenerationUnavailable(
                message,
                code=code,
                details={"original_error": error_msg},
                cause=e
            )

    async def generate_with_system_prompt(
        self,
        system_prompt: str,
        user_content: Any,
        tools: Optional[List[Dict[str, Any]]] = None,
        response_format: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Generate a response with system prompt.

        Args:
            system_prompt: System prompt for context.
            user_content: User message text, or a list of content blocks.
            tools: Provider-side tools to bind.
            response_format: Structured-output contract.

        Returns:
            Dict with content, citations and token usage.
        """
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_content)
        ]
        return await self.generate(messages, tools=tools, response_format=response_format)

