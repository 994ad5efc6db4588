import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from anthropic import AsyncAnthropic

from stgtrade.core.config import AppConfig, RetryConfig
from stgtrade.core.exceptions import CredentialMissingError, MalformedResponseError
from stgtrade.core.types import ANALYSIS_ROLES, AgentRole, GenerationResult, GroundingSource, TickerInfo
from stgtrade.prompts.agent_prompts import TICKER_LOOKUP_PROMPT
from stgtrade.services.retry import call_with_retry

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_TEXT = "No content returned."
_ABSENT_KEY_VALUES = ("", "undefined", "none", "null")


def _usable_key(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return None if value.lower() in _ABSENT_KEY_VALUES else value


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first balanced `{...}` span in `text` that parses as a JSON object.

    Braces inside JSON string literals are ignored while balancing, so prose
    around the object (or a stray brace in a quoted company name) is tolerated.
    """
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start:i + 1]
                    try:
                        parsed = json.loads(candidate)
                    except json.JSONDecodeError:
                        break
                    if isinstance(parsed, dict):
                        return parsed
                    break
        start = text.find("{", start + 1)
    return None


def _block_attr(block: Any, name: str) -> Any:
    if isinstance(block, dict):
        return block.get(name)
    return getattr(block, name, None)


class InferenceGateway:
    """Issues ticker lookups and role-conditioned generations against Claude.

    Both calls resolve a credential first (explicit key over environment) and
    then run through the retry wrapper. A missing credential fails fast with
    CredentialMissingError and never consumes a retry.

    Args:
        config: Application configuration (defaults to AppConfig.from_env())
        api_key: User-provided credential; takes precedence over the environment
        client_factory: Callable building a client from an api key (injectable for tests)
        sleep: Awaitable sleep passed to the retry wrapper
    """

    WEB_SEARCH_TOOL_TYPE = "web_search_20250305"
    LOOKUP_MAX_TOKENS = 512
    # Server-side search can pause a long turn; resend it this many times at most
    MAX_TURN_CONTINUATIONS = 3

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        api_key: Optional[str] = None,
        client_factory: Optional[Callable[[str], Any]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.config = config or AppConfig.from_env()
        self._api_key = api_key
        self._client_factory = client_factory or self._default_client_factory
        self._sleep = sleep
        self._clients: Dict[str, Any] = {}

    def _default_client_factory(self, api_key: str) -> AsyncAnthropic:
        # SDK retries off: call_with_retry owns the retry policy
        return AsyncAnthropic(api_key=api_key, max_retries=0, timeout=self.config.claude.request_timeout)

    @property
    def retry_config(self) -> RetryConfig:
        return self.config.retry

    def resolve_api_key(self) -> str:
        """Return the first usable credential or raise CredentialMissingError."""
        for candidate in (self._api_key, self.config.claude.api_key):
            key = _usable_key(candidate)
            if key:
                return key
        raise CredentialMissingError("No Anthropic API key configured. Provide one or set ANTHROPIC_API_KEY.")

    def _get_client(self) -> Any:
        key = self.resolve_api_key()
        client = self._clients.get(key)
        if client is None:
            client = self._client_factory(key)
            self._clients[key] = client
        return client

    def _web_search_tool(self) -> Dict[str, Any]:
        return {
            "type": self.WEB_SEARCH_TOOL_TYPE,
            "name": "web_search",
            "max_uses": self.config.claude.web_search_max_uses,
        }

    def temperature_for(self, role: AgentRole) -> float:
        claude_cfg = self.config.claude
        return claude_cfg.analysis_temperature if role in ANALYSIS_ROLES else claude_cfg.default_temperature

    async def resolve_ticker(self, symbol: str) -> TickerInfo:
        """Look up the display name and last close for `symbol` via a search-grounded call.

        Raises:
            CredentialMissingError: No usable credential
            QuotaExhaustedError: Daily quota reached
            MalformedResponseError: No JSON object with a string name and positive price
        """
        client = self._get_client()
        claude_cfg = self.config.claude
        kwargs: Dict[str, Any] = dict(
            model=claude_cfg.lookup_model,
            max_tokens=self.LOOKUP_MAX_TOKENS,
            temperature=0,
            messages=[{"role": "user", "content": TICKER_LOOKUP_PROMPT.format(symbol=symbol)}],
            tools=[self._web_search_tool()],
        )

        response = await self._create_message(client, kwargs, f"ticker lookup {symbol}")
        text = self._collect_text(response)
        payload = extract_json_object(text)
        if payload is None:
            raise MalformedResponseError(f"Ticker lookup for {symbol} returned no JSON object: {text[:200]!r}")

        name = payload.get("name")
        price = payload.get("price")
        if isinstance(price, str):
            try:
                price = float(price.replace(",", ""))
            except ValueError:
                price = None
        if not isinstance(name, str) or not name.strip():
            raise MalformedResponseError(f"Ticker lookup for {symbol} returned no usable name: {payload}")
        if isinstance(price, bool) or not isinstance(price, (int, float)) or price <= 0:
            raise MalformedResponseError(f"Ticker lookup for {symbol} returned no usable price: {payload}")

        logger.info("Resolved ticker", extra={"ticker": symbol, "stock_name": name, "price": price})
        return TickerInfo(name=name.strip(), price=float(price))

    async def generate(
        self,
        role: AgentRole,
        prompt: str,
        system_instruction: str,
        use_search: bool = False,
        model: Optional[str] = None,
    ) -> GenerationResult:
        """Generate one role's report.

        Returns:
            GenerationResult with the joined text blocks and de-duplicated citation sources
        """
        client = self._get_client()
        claude_cfg = self.config.claude
        model = model or claude_cfg.economy_model
        kwargs: Dict[str, Any] = dict(
            model=model,
            max_tokens=claude_cfg.max_tokens,
            temperature=self.temperature_for(role),
            system=system_instruction,
            messages=[{"role": "user", "content": prompt}],
        )
        if use_search:
            kwargs["tools"] = [self._web_search_tool()]

        response = await self._create_message(client, kwargs, f"{role.value} generation")
        text = self._collect_text(response) or EMPTY_RESPONSE_TEXT
        sources = self._collect_sources(response)
        logger.debug(
            "Generation complete",
            extra={"role": role.value, "model": model, "chars": len(text), "sources": len(sources)},
        )
        return GenerationResult(text=text, sources=sources)

    async def _create_message(self, client: Any, kwargs: Dict[str, Any], operation_name: str) -> Dict[str, Any]:
        """Run one request through the retry wrapper, resuming turns paused by server-side tools.

        Returns a message-like dict holding the content blocks of every turn segment.
        """
        content: List[Any] = []
        stop_reason = None
        for _ in range(self.MAX_TURN_CONTINUATIONS + 1):
            async def _create():
                return await client.messages.create(**kwargs)

            response = await call_with_retry(
                _create, config=self.retry_config, sleep=self._sleep, operation_name=operation_name
            )
            blocks = list(_block_attr(response, "content") or [])
            content.extend(blocks)
            stop_reason = _block_attr(response, "stop_reason")
            if stop_reason != "pause_turn":
                break
            logger.debug("Resuming paused turn", extra={"operation": operation_name})
            kwargs = dict(kwargs, messages=kwargs["messages"] + [{"role": "assistant", "content": blocks}])
        else:
            logger.warning(
                "Turn still paused after continuations; using partial output",
                extra={"operation": operation_name, "continuations": self.MAX_TURN_CONTINUATIONS},
            )
        return {"content": content, "stop_reason": stop_reason}

    @staticmethod
    def _collect_text(response: Any) -> str:
        parts: List[str] = []
        for block in _block_attr(response, "content") or []:
            if _block_attr(block, "type") == "text":
                parts.append(_block_attr(block, "text") or "")
        return "".join(parts).strip()

    @staticmethod
    def _collect_sources(response: Any) -> List[GroundingSource]:
        """Citations from web-search result blocks and text citations; URI-less entries are dropped."""
        seen: Dict[str, GroundingSource] = {}

        def _add(item: Any) -> None:
            uri = _block_attr(item, "url") or _block_attr(item, "uri")
            if not uri or uri in seen:
                return
            seen[uri] = GroundingSource(uri=uri, title=_block_attr(item, "title") or uri)

        for block in _block_attr(response, "content") or []:
            block_type = _block_attr(block, "type")
            if block_type == "web_search_tool_result":
                results = _block_attr(block, "content")
                if isinstance(results, list):
                    for item in results:
                        _add(item)
            elif block_type == "text":
                for citation in _block_attr(block, "citations") or []:
                    _add(citation)
        return list(seen.values())
