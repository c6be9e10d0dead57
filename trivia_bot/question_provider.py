"""
Open Trivia Database client.

Fetches one session's questions for a resolved query and decodes them into
Question objects with the correct answer first. Failures are raised as
ProviderError and never retried here.
"""
import html
import logging
from typing import Any, Dict, List, Optional

import httpx

from .models import Question

logger = logging.getLogger(__name__)

OPENTDB_ENDPOINT = "https://opentdb.com/api.php"

RESPONSE_CODE_MESSAGES = {
    1: "Not enough questions for the selected options",
    2: "Invalid options were sent to the question service",
    3: "Session token not found",
    4: "Session token has returned all possible questions",
    5: "Too many requests, please wait a few seconds",
}


class ProviderError(Exception):
    """Raised when questions cannot be fetched."""

    def __init__(self, message: str, status: Optional[int] = None, response_code: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.response_code = response_code

    @property
    def user_message(self) -> str:
        if self.response_code in RESPONSE_CODE_MESSAGES:
            return RESPONSE_CODE_MESSAGES[self.response_code]
        if self.status is not None:
            return f"Question service returned HTTP {self.status}"
        return "Could not reach the question service"


def _unescape(s: Any) -> str:
    return html.unescape(str(s or "")).strip()


def parse_question(raw: Dict[str, Any]) -> Question:
    """Decode one API result; the correct answer is placed first in options."""
    correct = _unescape(raw.get("correct_answer"))
    incorrect = raw.get("incorrect_answers")
    if not isinstance(incorrect, list):
        incorrect = []
    return Question(
        text=_unescape(raw.get("question")),
        correct_answer=correct,
        options=[correct] + [_unescape(answer) for answer in incorrect],
        type=_unescape(raw.get("type")) or "multiple",
        category=_unescape(raw.get("category")),
        difficulty=_unescape(raw.get("difficulty")).lower(),
    )


def parse_response(data: Any) -> List[Question]:
    """
    Turn an API payload into questions.

    Raises:
        ProviderError: If the payload reports an error or is malformed
    """
    if not isinstance(data, dict):
        raise ProviderError(f"Unexpected response payload: {type(data).__name__}")

    response_code = data.get("response_code")
    if response_code != 0:
        raise ProviderError(
            f"Question service responded with code {response_code}",
            response_code=response_code
        )

    results = data.get("results")
    if not isinstance(results, list):
        raise ProviderError("Response is missing the results list", response_code=response_code)

    questions = []
    for raw in results:
        if not isinstance(raw, dict) or not raw.get("question") or not raw.get("correct_answer"):
            logger.warning(f"Skipping malformed question: {raw!r}")
            continue
        questions.append(parse_question(raw))
    return questions


class OpenTriviaProvider:
    """Async client for the Open Trivia Database question API."""

    def __init__(
        self,
        api_url: str = OPENTDB_ENDPOINT,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Args:
            api_url: Question API endpoint
            timeout: Request timeout in seconds
            client: Shared HTTP client; one is created on demand if omitted
        """
        self.api_url = api_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def fetch_questions(self, query: Dict[str, Any]) -> List[Question]:
        """
        Fetch questions for a resolved query.

        Raises:
            ProviderError: On transport failure, non-200 status, or API error code
        """
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        logger.info(f"Fetching questions: {query}")
        try:
            response = await self._client.get(self.api_url, params=query)
        except httpx.HTTPError as e:
            raise ProviderError(f"Question request failed: {e}") from e

        if response.status_code != 200:
            raise ProviderError(f"HTTP {response.status_code}", status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from question service: {e}", status=response.status_code) from e

        questions = parse_response(data)
        logger.info(f"Fetched {len(questions)} questions")
        return questions

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
