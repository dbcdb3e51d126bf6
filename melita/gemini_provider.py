"""
Gemini provider for flowchart and complexity analysis.
"""
from __future__ import annotations

import json
from typing import Any, Optional, Union

import httpx
from google import genai
from google.genai import types
from pydantic import ValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from melita.config import settings, logger
from melita.exceptions import CodeExtractionError, ResponseParseError
from melita.models import AnalysisResult
from melita.prompts import OCR_INSTRUCTION, build_analysis_prompt


QUOTA_GRAPH = (
    "graph TD;\n"
    "        Error[⛔ QUOTA EXCEEDED]:::error\n"
    "        Desc[API Limit Reached]:::base\n"
    "        Wait[Please wait a moment...]:::skip\n"
    "        Error --> Desc --> Wait\n"
    "        classDef error fill:#ef4444,stroke:#7f1d1d,stroke-width:2px,color:#fff\n"
    "        classDef base fill:#1f2937,stroke:#374151,color:#fff\n"
    "        classDef skip fill:#374151,stroke:#4b5563,stroke-dasharray: 5 5,color:#9ca3af"
)

PARSE_ERROR_GRAPH = (
    "graph TD;\n"
    "        Error[⚠️ PARSING ERROR]:::error\n"
    "        Desc[AI Response Malformed]:::base\n"
    "        Retry[Try Simplifying Code]:::result\n"
    "        Error --> Desc --> Retry\n"
    "        classDef error fill:#f59e0b,stroke:#b45309,color:#000\n"
    "        classDef base fill:#1f2937,stroke:#374151,color:#fff\n"
    "        classDef result fill:#d1fae5,stroke:#059669,color:#000"
)

OVERLOAD_GRAPH = (
    "graph TD;\n"
    '      Start["Start"]:::base\n'
    '      Note["⚠️ Complex / Large Logic"]:::skip\n'
    '      Summary["(... Visualization skipped for performance ...)"]:::skip\n'
    '      End["Result"]:::result\n'
    "      Start --> Note --> Summary --> End\n"
    "      classDef base fill:#d1fae5,stroke:#059669,stroke-width:2px,color:#000\n"
    "      classDef skip fill:#f3f4f6,stroke:#9ca3af,stroke-width:2px,stroke-dasharray: 5 5,color:#000\n"
    "      classDef result fill:#fef3c7,stroke:#d97706,stroke-width:2px,color:#000"
)

QUOTA_EXPLANATION = (
    "**API Limit Reached:** We have hit the daily/per-minute limit for the Google Gemini API. "
    "There is no issue with your code; the service is currently unresponsive. "
    "Please wait a moment and try again."
)

PARSE_ERROR_EXPLANATION = (
    "**Data Processing Error:** The Artificial Intelligence encountered a technical error "
    "during response generation."
)

OVERLOAD_EXPLANATION = (
    "**Visualization Threshold Reached:** The system is currently under heavy load or the code "
    "is excessively complex. Switched to summary display mode."
)


# Fields a reply must fill; the rest have defaults
REQUIRED_FIELDS = ("mermaidGraph", "explanation")


def clean_json_string(text: str) -> str:
    """
    Strip markdown fences and keep the outermost brace pair.

    >>> clean_json_string('noise{"a":1}noise')
    '{"a":1}'
    """
    cleaned = text.replace("```json", "").replace("```", "").strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last != -1:
        cleaned = cleaned[first:last + 1]
    return cleaned


def parse_analysis(text: str) -> AnalysisResult:
    """
    Decode a model reply into an AnalysisResult.

    Raises:
        ResponseParseError: If the reply is not a JSON object of strings,
            or lacks a diagram or an explanation
    """
    try:
        data = json.loads(clean_json_string(text))
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"JSON Parse Error: {exc}") from exc

    if not isinstance(data, dict):
        raise ResponseParseError("JSON Parse Error: expected an object")

    for name in REQUIRED_FIELDS:
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            raise ResponseParseError(f"JSON Parse Error: missing field {name}")

    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as exc:
        raise ResponseParseError(f"JSON Parse Error: {exc.error_count()} invalid field(s)") from exc


def _parse_error_result() -> AnalysisResult:
    return AnalysisResult(
        mermaidGraph=PARSE_ERROR_GRAPH,
        explanation=PARSE_ERROR_EXPLANATION,
        timeComplexity="?",
        spaceComplexity="?",
        optimizationTip="Simplify the code snippet.",
    )


def fallback_response(error: Union[BaseException, str]) -> AnalysisResult:
    """
    Build a renderable result describing an upstream failure.

    A ResponseParseError always maps to the malformed-response result.
    Anything else is classified by substring of the lower-cased error text:
    quota/rate limit first, then malformed JSON, then everything else.
    """
    if isinstance(error, ResponseParseError):
        return _parse_error_result()

    msg = str(error).lower()

    if "429" in msg or "quota" in msg or "exhausted" in msg:
        return AnalysisResult(
            mermaidGraph=QUOTA_GRAPH,
            explanation=QUOTA_EXPLANATION,
            timeComplexity="Unknown",
            spaceComplexity="Unknown",
            optimizationTip="Try again later.",
        )

    if "json" in msg or "syntax" in msg:
        return _parse_error_result()

    return AnalysisResult(
        mermaidGraph=OVERLOAD_GRAPH,
        explanation=f"{OVERLOAD_EXPLANATION}\n\nError Details: {msg}",
        timeComplexity="O(High)",
        spaceComplexity="O(High)",
        optimizationTip="Try creating smaller functions.",
    )


class GeminiProvider:
    """
    Gemini provider for code analysis and code extraction from images.
    """

    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None):
        self._client: Optional[genai.Client] = client
        self._model = model or settings.GEMINI_MODEL
        if self._client is None:
            self._initialize()

    def _initialize(self) -> None:
        """Initialize Gemini client."""
        if not settings.GEMINI_API_KEY:
            logger.warning("GEMINI_API_KEY not configured")
            return

        try:
            self._client = genai.Client(api_key=settings.GEMINI_API_KEY)
            logger.info("Gemini client initialized (model=%s)", self._model)
        except Exception as exc:
            logger.error("Failed to initialize Gemini client: %s", exc)

    def is_available(self) -> bool:
        """Check if provider is available."""
        return self._client is not None

    @property
    def model_name(self) -> str:
        return self._model

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type((ConnectionError, httpx.TransportError)),
        reraise=True,
    )
    async def _generate(self, contents: Any, config: Optional[types.GenerateContentConfig] = None) -> str:
        if not self._client:
            raise RuntimeError("Gemini client not initialized, check GEMINI_API_KEY")

        response = await self._client.aio.models.generate_content(
            model=self._model,
            contents=contents,
            config=config,
        )
        return response.text or ""

    async def request_analysis(self, code: str) -> AnalysisResult:
        """
        Analyze code and return a flowchart with complexity estimates.

        Never raises: any failure is logged and turned into a fallback
        result that still renders.
        """
        prompt = build_analysis_prompt(code, max_nodes=settings.MAX_DIAGRAM_NODES)
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            temperature=settings.TEMPERATURE,
            max_output_tokens=settings.MAX_TOKENS,
        )

        try:
            text = await self._generate(prompt, config)
            logger.debug("Gemini raw response: %s", text[:500])
            return parse_analysis(text)
        except Exception as exc:
            logger.error("Gemini analysis error: %s", exc)
            return fallback_response(exc)

    async def extract_code(self, image: bytes, mime_type: str) -> str:
        """
        Read source code out of an image.

        Raises:
            CodeExtractionError: On any failure; there is no fallback text
        """
        try:
            text = await self._generate(
                [OCR_INSTRUCTION, types.Part.from_bytes(data=image, mime_type=mime_type)]
            )
        except Exception as exc:
            logger.error("Code extraction error: %s", exc)
            raise CodeExtractionError("Failed to read code from image.") from exc

        return text.strip()


# Global provider instance
gemini_provider = GeminiProvider()
