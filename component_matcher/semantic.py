"""Semantic comparison of a candidate against a library component.

The semantic tier asks a language model whether two differently described
items are the same physical product (naming conventions, manufacturer
spellings, part number formatting, Hebrew vs English descriptions).
"""

import asyncio
import json
from typing import Optional, Protocol

import openai

from component_matcher.models import SemanticComparison
from core.errors import MatchingFailure
from core.models.canonical import CandidateComponent, LibraryComponent
from core.observability.logging import get_logger


logger = get_logger(__name__)

MAX_ATTEMPTS = 3
RATE_LIMIT_WAIT_SECONDS = 20


class SemanticMatcher(Protocol):
    """Protocol for semantic comparison providers.

    Implementations raise on failure (network, timeout, quota, unparseable
    output); the component matcher treats any exception as "no match".
    """

    async def compare(
        self,
        candidate: CandidateComponent,
        entry: LibraryComponent,
    ) -> SemanticComparison:
        ...


def build_comparison_prompt(candidate: CandidateComponent, entry: LibraryComponent) -> str:
    """Prompt asking whether the two records describe the same product."""
    return f"""You are an expert in industrial automation components and robotics parts. Decide whether two records describe the SAME physical product, even if described differently.

NEW COMPONENT from supplier quote:
- Name: {candidate.name or 'Unknown'}
- Manufacturer: {candidate.manufacturer or 'Unknown'}
- Part Number: {candidate.manufacturer_pn or 'Unknown'}
- Description: {candidate.description or 'None'}

EXISTING COMPONENT in library:
- Name: {entry.name}
- Manufacturer: {entry.manufacturer or 'Unknown'}
- Part Number: {entry.manufacturer_pn or 'Unknown'}
- Category: {entry.category}
- Description: {entry.description or 'None'}

Consider:
- Different naming conventions (e.g., "PLC" vs "Controller", "חיישן" vs "Sensor")
- Manufacturer variations (e.g., "Siemens" vs "SIEMENS AG" vs "Siemens Ltd")
- Part number formatting (e.g., "6ES7512-1DK01-0AB0" vs "6ES7 512-1DK01-0AB0")
- Language differences (Hebrew vs English)
- Model variations within the same product family

Return ONLY a JSON object with this EXACT format:
{{"isMatch": true, "confidence": 0.95, "reasoning": "Same part number with minor formatting difference", "recommendation": "same_component"}}

recommendation is one of "same_component", "different_component", "uncertain"."""


def parse_comparison(raw_text: str) -> SemanticComparison:
    """Parse the model's JSON verdict.

    Raises:
        MatchingFailure: If no JSON object can be read from the response
    """
    text = raw_text or ""
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise MatchingFailure("Semantic matcher response did not contain JSON", details=text[:200])
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise MatchingFailure("Semantic matcher returned malformed JSON", details=str(e))

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0

    return SemanticComparison(
        is_match=bool(data.get("isMatch", False)),
        confidence=min(max(confidence, 0.0), 1.0),
        reasoning=str(data.get("reasoning", "")),
    )


class OpenAISemanticMatcher:
    """Semantic matcher backed by the OpenAI chat completions API.

    Example:
        matcher = OpenAISemanticMatcher(api_key=config.openai_api_key)
        verdict = await matcher.compare(candidate, library_component)
    """

    def __init__(self, api_key: str, model: str = "gpt-4o-mini",
                 client: Optional[openai.AsyncOpenAI] = None):
        self.model = model
        self.client = client or openai.AsyncOpenAI(api_key=api_key, timeout=60.0)

    async def compare(
        self,
        candidate: CandidateComponent,
        entry: LibraryComponent,
    ) -> SemanticComparison:
        prompt = build_comparison_prompt(candidate, entry)

        for attempt in range(MAX_ATTEMPTS):
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=0,
                    max_tokens=512,
                )
                return parse_comparison(response.choices[0].message.content)
            except openai.RateLimitError:
                logger.warning(
                    f"Rate limited, waiting {RATE_LIMIT_WAIT_SECONDS}s (attempt {attempt + 1}/{MAX_ATTEMPTS})"
                )
                await asyncio.sleep(RATE_LIMIT_WAIT_SECONDS)
            except openai.APITimeoutError:
                logger.warning(f"Timeout, retrying (attempt {attempt + 1}/{MAX_ATTEMPTS})")
            except openai.OpenAIError as e:
                raise MatchingFailure("Semantic matcher request failed", details=str(e))

        raise MatchingFailure(f"Semantic comparison failed after {MAX_ATTEMPTS} attempts")
