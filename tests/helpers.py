"""Test doubles shared across test modules."""

import asyncio
import json

from cv_extract_api.validation import ExtractionRequest

VALID_EXTRACTION = {
    "cvData": {
        "personalInfo": {"fullName": "Ada Lovelace", "email": "ada@example.com"},
        "experience": [{"company": "Analytical Engines", "role": "Programmer"}],
    },
    "jobData": {
        "jobIdentification": {"jobTitle": "Senior Programmer"},
        "candidateRequirements": {"essentialSkills": "Mathematics"},
    },
}

VALID_RESPONSE_TEXT = json.dumps(VALID_EXTRACTION)


class FakeModelClient:
    """Scripted ModelClient.

    Each call consumes the next scripted item; the last item repeats. Items
    that are exceptions are raised, strings are returned.
    """

    provider = "fake"
    model = "fake-model"

    def __init__(self, *responses: object, delay: float = 0.0):
        self.responses = list(responses) or [VALID_RESPONSE_TEXT]
        self.delay = delay
        self.calls = 0
        self.requests: list[ExtractionRequest] = []

    async def generate(self, request: ExtractionRequest, prompt: str) -> str:
        self.calls += 1
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
