"""
Field Refiner - LLM extraction of structured job fields from page text

Sends scraped (or client-captured) page text to an OpenAI chat model with a
fixed extraction prompt and parses the JSON answer into a RefinedJob.

Failure policy:
- Model/API errors propagate unchanged; there is no internal retry
- Output that is not a JSON object raises ParseError
- Markdown code fences around the JSON are tolerated

Usage:
    from openai import AsyncOpenAI

    refiner = FieldRefiner(openai_client=AsyncOpenAI())
    job = await refiner.refine(page.content, url)
    job.title, job.skills
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from scrape_worker.errors import ParseError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 30000

REFINE_PROMPT = """Extract job details from this text. Return ONLY valid JSON, no markdown.
Do not summarize the description; keep the full original text.

Fields:
- title: job title (the most specific one on the page)
- company: company name
- location: e.g. "San Francisco, CA", "Remote", "New York, NY"
- salary: salary range if available, e.g. "$120k - $150k", "$60/hr"
- description: the FULL original job description, cleaned of navigation artifacts. Include responsibilities, requirements and benefits
- skills: an array of strings with the technical and soft skills required
- workType: "Remote", "On-site", "Hybrid", "Contract", "Full-time", etc.
- postedAt: date posted if available (YYYY-MM-DD if possible, or relative like "2 days ago")

Use null for anything not present on the page.

URL: {url}
Text:
{text}"""

SYSTEM_PROMPT = "You extract job posting data from web page text and answer with a single JSON object."

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class RefinedJob(BaseModel):
    """Structured job fields returned by the model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    salary: Optional[str] = None
    description: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    work_type: Optional[str] = Field(default=None, alias="workType")
    posted_at: Optional[str] = Field(default=None, alias="postedAt")

    @field_validator(
        "title", "company", "location", "salary", "description", "work_type", "posted_at",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return str(value)
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, list):
            return ", ".join(str(v) for v in value if v is not None)
        return value

    @field_validator("skills", mode="before")
    @classmethod
    def _coerce_skills(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, list):
            return [str(v).strip() for v in value if v is not None and str(v).strip()]
        return value

    def to_fields(self) -> Dict[str, Any]:
        """Column values for JobStore.finalize()."""
        return self.model_dump(by_alias=False)


def strip_code_fences(content: str) -> str:
    """Remove ```json / ``` fence markers the model sometimes adds."""
    return _FENCE_RE.sub("", content).strip()


def parse_refined_job(content: Optional[str]) -> RefinedJob:
    """
    Parse a raw model answer into a RefinedJob.

    Raises:
        ParseError: empty answer, invalid JSON, non-object JSON, or fields of
            an unusable type
    """
    if not content or not content.strip():
        raise ParseError("Empty response from AI")

    cleaned = strip_code_fences(content)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f"AI response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError(f"AI response is not a JSON object: {type(data).__name__}")

    try:
        return RefinedJob.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"AI response has unexpected field types: {e}") from e


class FieldRefiner:
    """
    Turns raw page text into a RefinedJob with one model call.

    Attributes:
        client: Async OpenAI client
        model: Chat model name
        max_chars: Default input truncation length
    """

    def __init__(
        self,
        openai_client: Any,
        model: str = "gpt-4o-mini",
        max_chars: int = DEFAULT_MAX_CHARS,
    ):
        self.client = openai_client
        self.model = model
        self.max_chars = max_chars

    def build_prompt(self, text: str, url: str, max_chars: Optional[int] = None) -> str:
        limit = max_chars if max_chars is not None else self.max_chars
        return REFINE_PROMPT.format(url=url, text=text[:limit])

    async def refine(self, text: str, url: str, max_chars: Optional[int] = None) -> RefinedJob:
        """
        Extract structured fields from ``text``.

        Args:
            text: Page text (truncated to ``max_chars``)
            url: Source URL, included in the prompt for context
            max_chars: Override of the instance truncation length

        Raises:
            ParseError: the answer could not be parsed
            Exception: any OpenAI client error, unchanged
        """
        limit = max_chars if max_chars is not None else self.max_chars
        prompt = self.build_prompt(text, url, limit)
        logger.info(f"Sending {len(text[:limit])} characters to AI for {url}")

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.1,  # Extraction, not creativity
        )

        content = response.choices[0].message.content
        refined = parse_refined_job(content)
        logger.info(f"AI response received for {url}: {refined.title!r} at {refined.company!r}")
        return refined


# ==============================================================================
# Singleton Pattern for Dependency Injection
# ==============================================================================

_field_refiner: Optional[FieldRefiner] = None


def get_field_refiner() -> FieldRefiner:
    """
    Get shared FieldRefiner instance (singleton pattern).

    Creates one AsyncOpenAI client that is reused by the worker and the
    capture endpoint.
    """
    global _field_refiner
    if _field_refiner is None:
        from openai import AsyncOpenAI
        from scrape_worker.config import get_settings

        settings = get_settings()
        client = AsyncOpenAI(api_key=settings.openai_api_key)
        _field_refiner = FieldRefiner(
            openai_client=client,
            model=settings.openai_model,
            max_chars=settings.refine_max_chars,
        )
        logger.info("Created singleton FieldRefiner instance")
    return _field_refiner
