"""
IPAudit AI Provider Abstraction Layer
Supports Gemini and Claude APIs with a unified interface for structured
(JSON) audit responses.
"""

import json
import os
import re
import time
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)


class AuthorizationError(Exception):
    """The provider rejected the API key or the key is not entitled to the model"""

    def __init__(self, provider: str, status_code: int, detail: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{provider} authorization failed ({status_code}): {detail}")


# Gemini answers 404 with this message when the selected key has no access to the model
ENTITLEMENT_ERROR_MARKER = "Requested entity was not found"
# Gemini answers 400 INVALID_ARGUMENT, not 401, when the key itself is invalid
INVALID_KEY_MARKERS = ("API_KEY_INVALID", "API key not valid")


class AIProvider(ABC):
    """Abstract base class for AI providers"""

    # Class-level verbose flag (set by factory from config)
    _verbose = False
    name = "provider"
    DEFAULT_MODEL = ""

    def __init__(self, api_key: str, model: str, temperature: float = 0.1,
                 max_retries: int = 3, timeout: float = 180.0):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_retries = max_retries
        self.retry_delay = 2
        self.timeout = timeout

    @classmethod
    def set_verbose(cls, verbose: bool):
        """Enable or disable verbose logging for all providers"""
        cls._verbose = verbose
        if verbose:
            logger.info("VERBOSE MODE ENABLED - All AI inputs/outputs will be logged")

    def _log_verbose(self, message: str, data: str = None):
        if self._verbose:
            logger.info(f"[VERBOSE] {message}")
            if data:
                if len(data) > 5000:
                    logger.info(f"[VERBOSE] Data (truncated {len(data)} chars):\n{data[:2500]}\n...[TRUNCATED]...\n{data[-2500:]}")
                else:
                    logger.info(f"[VERBOSE] Data:\n{data}")

    @abstractmethod
    def _make_request(self, prompt: str, system_prompt: Optional[str] = None,
                      response_schema: Optional[Dict[str, Any]] = None) -> str:
        """Send one request and return the raw response text"""

    def complete(self, prompt: str, system_prompt: Optional[str] = None,
                 response_schema: Optional[Dict[str, Any]] = None) -> str:
        """Generate a completion for the given prompt"""
        return self._retry_with_backoff(self._make_request, prompt, system_prompt, response_schema)

    def complete_json(self, prompt: str, system_prompt: Optional[str] = None,
                      response_schema: Optional[Dict[str, Any]] = None,
                      max_json_retries: int = 2) -> Dict[str, Any]:
        """Generate a JSON completion with robust parsing and retry on failure"""
        json_system = (system_prompt or "") + """

CRITICAL: Respond with valid JSON only.
- No markdown code blocks (no ```)
- No explanatory text before or after
- Ensure the JSON is complete (all brackets closed)"""

        last_error = None
        for attempt in range(max_json_retries + 1):
            try:
                response = self.complete(prompt, json_system, response_schema)
                parsed = extract_json(response)
                self._log_verbose(f"JSON PARSED SUCCESSFULLY (attempt {attempt + 1})",
                                  json.dumps(parsed, indent=2)[:2000])
                return parsed
            except json.JSONDecodeError as e:
                last_error = e
                if attempt < max_json_retries:
                    logger.warning(f"JSON parse attempt {attempt + 1} failed: {e}, retrying...")

        raise last_error

    def _retry_with_backoff(self, func, *args, **kwargs):
        """Retry a function with exponential backoff.

        Rate limits (429) wait longer. Authorization failures and 400 Bad
        Request are raised immediately since retrying cannot fix them.
        """
        last_exception = None
        max_attempts = self.max_retries + 2
        for attempt in range(max_attempts):
            try:
                return func(*args, **kwargs)
            except AuthorizationError:
                raise
            except Exception as e:
                last_exception = e
                status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None

                if status == 400:
                    logger.error(f"Non-retriable 400 error, failing immediately: {e}")
                    raise

                if status == 429:
                    wait_time = min(60, 15 * (2 ** attempt))
                else:
                    if attempt >= self.max_retries - 1:
                        raise
                    wait_time = self.retry_delay * (2 ** attempt)
                logger.warning(f"Attempt {attempt + 1} failed: {e}. Retrying in {wait_time}s...")
                time.sleep(wait_time)
        raise last_exception

    def _check_response(self, response: httpx.Response):
        """Log error bodies and raise AuthorizationError or HTTPStatusError"""
        if response.status_code == 200:
            return
        try:
            error_body = response.json()
        except ValueError:
            error_body = response.text[:500]
        logger.error(f"{self.name.upper()} API ERROR {response.status_code}: {error_body}")

        detail = json.dumps(error_body) if not isinstance(error_body, str) else error_body
        if response.status_code in (401, 403) or (
                response.status_code == 404 and ENTITLEMENT_ERROR_MARKER in detail) or (
                response.status_code == 400 and any(m in detail for m in INVALID_KEY_MARKERS)):
            raise AuthorizationError(self.name, response.status_code, detail[:300])
        response.raise_for_status()


# =============================================================================
# JSON EXTRACTION
# =============================================================================
def extract_json(response: str) -> Any:
    """
    Robustly extract and parse JSON from an AI response.
    Handles markdown fences, leading/trailing prose and truncated output.
    """
    original_response = response
    text = _strip_code_fence(response.strip())

    start = next((i for i, ch in enumerate(text) if ch in '{['), -1)
    if start != -1:
        end = _matching_bracket(text, start)
        text = text[start:end] if end != -1 else text[start:]

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse failed: {e}")
        repaired = _repair_json(text)
        if repaired:
            try:
                return json.loads(repaired)
            except json.JSONDecodeError:
                pass
        logger.error(f"Failed to parse JSON response. First 500 chars: {original_response[:500]}")
        raise


def _strip_code_fence(text: str) -> str:
    match = re.search(r"```(?:json)?\s*(.*?)(?:```|$)", text, re.DOTALL)
    return match.group(1).strip() if match else text


def _structural_chars(text: str) -> Tuple[List[Tuple[int, str]], bool]:
    """Characters outside JSON string literals, and whether the text ends inside a string"""
    chars = []
    in_string = False
    escape_next = False
    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == '\\':
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if not in_string:
            chars.append((i, char))
    return chars, in_string


def _matching_bracket(text: str, start: int) -> int:
    open_char = text[start]
    close_char = '}' if open_char == '{' else ']'
    depth = 0
    for i, char in _structural_chars(text[start:])[0]:
        if char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return start + i + 1
    return -1


def _repair_json(text: str) -> Optional[str]:
    """Close an unterminated string and any unclosed brackets (truncated output)"""
    chars, in_string = _structural_chars(text)
    stack = []
    for _, char in chars:
        if char in '{[':
            stack.append('}' if char == '{' else ']')
        elif char in '}]' and stack and stack[-1] == char:
            stack.pop()

    repaired = text + '"' if in_string else text

    if stack:
        logger.warning(
            f"JSON REPAIR: Closing {len(stack)} unclosed bracket(s). "
            f"The AI response was probably truncated by the token limit."
        )
        return repaired + ''.join(reversed(stack))

    cleaned = re.sub(r'[\x00-\x1f\x7f-\x9f]', ' ', repaired)
    return cleaned if cleaned != text else None


# =============================================================================
# PROVIDERS
# =============================================================================
class GeminiProvider(AIProvider):
    """Google Gemini API provider"""

    name = "gemini"
    DEFAULT_MODEL = "gemini-2.5-pro"
    API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    MAX_OUTPUT_TOKENS = {
        "gemini-2.5-pro": 65536,
        "gemini-2.5-flash": 65536,
        "gemini-2.0-flash": 8192,
    }
    DEFAULT_MAX_OUTPUT = 65536

    def __init__(self, api_key: str, model: str = "gemini-2.5-pro", temperature: float = 0.1, **kwargs):
        super().__init__(api_key, model, temperature, **kwargs)
        self._max_tokens = self.MAX_OUTPUT_TOKENS.get(model, self.DEFAULT_MAX_OUTPUT)
        logger.info(f"Gemini provider: model={model}, max_output_tokens={self._max_tokens}")

    def build_payload(self, prompt: str, system_prompt: Optional[str] = None,
                      response_schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self._max_tokens,
            },
        }
        if system_prompt:
            data["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        if response_schema:
            data["generationConfig"]["responseMimeType"] = "application/json"
            data["generationConfig"]["responseSchema"] = response_schema
        return data

    def _make_request(self, prompt: str, system_prompt: Optional[str] = None,
                      response_schema: Optional[Dict[str, Any]] = None) -> str:
        self._log_verbose(f"GEMINI API REQUEST to {self.model}", prompt)

        url = self.API_URL.format(model=self.model)
        data = self.build_payload(prompt, system_prompt, response_schema)

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(url, params={"key": self.api_key}, json=data)
            self._check_response(response)
            result = response.json()

        candidate = (result.get("candidates") or [{}])[0]
        if candidate.get("finishReason") == "MAX_TOKENS":
            logger.warning("GEMINI RESPONSE TRUNCATED: hit maxOutputTokens limit. Response may be incomplete.")

        parts = (candidate.get("content") or {}).get("parts") or []
        response_text = "".join(p.get("text", "") for p in parts)
        self._log_verbose("GEMINI API RESPONSE:", response_text)
        return response_text


class ClaudeProvider(AIProvider):
    """Anthropic Claude API provider"""

    name = "claude"
    DEFAULT_MODEL = "claude-sonnet-4-5"
    API_URL = "https://api.anthropic.com/v1/messages"

    MAX_OUTPUT_TOKENS = {
        "claude-sonnet-4-5": 64000,
        "claude-opus-4-1": 32000,
        "claude-haiku-4-5": 64000,
    }
    DEFAULT_MAX_OUTPUT = 32000

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5", temperature: float = 0.1, **kwargs):
        super().__init__(api_key, model, temperature, **kwargs)
        self.headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json"
        }
        self._max_tokens = self.MAX_OUTPUT_TOKENS.get(model, self.DEFAULT_MAX_OUTPUT)
        logger.info(f"Claude provider: model={model}, max_output_tokens={self._max_tokens}")

    def _make_request(self, prompt: str, system_prompt: Optional[str] = None,
                      response_schema: Optional[Dict[str, Any]] = None) -> str:
        self._log_verbose(f"CLAUDE API REQUEST to {self.model}", prompt)

        if response_schema:
            # No native schema enforcement here; describe the shape in the system prompt
            schema_hint = "Return JSON matching this schema:\n" + json.dumps(response_schema, indent=2)
            system_prompt = f"{system_prompt}\n\n{schema_hint}" if system_prompt else schema_hint

        data = {
            "model": self.model,
            "max_tokens": self._max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            data["system"] = system_prompt

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self.API_URL, headers=self.headers, json=data)
            self._check_response(response)
            result = response.json()

        if result.get("stop_reason") == "max_tokens":
            logger.warning("CLAUDE RESPONSE TRUNCATED: hit max_tokens limit. Response may be incomplete.")

        response_text = "".join(b.get("text", "") for b in result.get("content", []) if b.get("type") == "text")
        self._log_verbose("CLAUDE API RESPONSE:", response_text)
        return response_text


# =============================================================================
# FACTORY
# =============================================================================
API_KEY_ENV_VARS = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"),
    "claude": ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY", "API_KEY"),
}


def resolve_api_key(config: Dict[str, Any], provider_name: str) -> str:
    """API key from config, falling back to the provider's environment variables"""
    key = (config.get("api_keys") or {}).get(provider_name) or ""
    if key:
        return key
    for env_var in API_KEY_ENV_VARS.get(provider_name, ()):
        if os.getenv(env_var):
            return os.environ[env_var]
    return ""


class AIProviderFactory:
    """Factory for creating AI providers based on configuration"""

    PROVIDERS = {
        "gemini": GeminiProvider,
        "claude": ClaudeProvider,
    }

    @classmethod
    def create(cls, provider_name: str, api_key: str, model: str, temperature: float = 0.1,
               verbose: bool = False, **kwargs) -> AIProvider:
        """Create an AI provider instance"""
        provider_name = provider_name.lower()

        if provider_name not in cls.PROVIDERS:
            raise ValueError(f"Unknown provider: {provider_name}. Available: {list(cls.PROVIDERS.keys())}")
        if not api_key:
            raise AuthorizationError(provider_name, 0, "no API key configured")

        AIProvider.set_verbose(verbose)
        return cls.PROVIDERS[provider_name](api_key=api_key, model=model, temperature=temperature, **kwargs)

    @classmethod
    def create_from_config(cls, config: Dict[str, Any]) -> AIProvider:
        """Create an AI provider from a configuration dictionary.

        Respects 'model_mode': 'full' (default) or 'fast'.
        """
        info = cls.get_model_info(config)
        processing = config.get("processing") or {}
        return cls.create(
            info["provider"],
            resolve_api_key(config, info["provider"]),
            info["model"],
            temperature=processing.get("temperature", 0.1),
            verbose=(config.get("logging") or {}).get("verbose", False),
            max_retries=int(processing.get("max_retries", 3)),
            timeout=float(processing.get("request_timeout", 180.0)),
        )

    @classmethod
    def get_model_info(cls, config: Dict[str, Any]) -> Dict[str, str]:
        """Return info about which provider/model will be used"""
        provider_name = config.get("ai_provider", "gemini").lower()
        model_mode = config.get("model_mode", "full").lower()
        models = (config.get("models") or {}).get(provider_name) or {}
        default_model = models.get("default") or cls.PROVIDERS.get(provider_name, GeminiProvider).DEFAULT_MODEL

        if model_mode == "fast":
            model = models.get("fast", default_model)
        else:
            model = default_model

        return {
            "provider": provider_name,
            "model": model,
            "mode": model_mode
        }
