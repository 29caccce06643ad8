"""Request pipeline: validate -> rate-limit -> invoke model -> normalize."""

import structlog

from cv_extract_api.config import get_settings
from cv_extract_api.errors import ContentError, RequestBodyMissing
from cv_extract_api.model_invoker import ModelInvoker, get_model_client
from cv_extract_api.models import ProcessCVRequest
from cv_extract_api.normalizer import ExtractionResult, ResponseNormalizer
from cv_extract_api.observability import document_size_bytes, model_retries_total
from cv_extract_api.prompts import EXTRACTION_PROMPT
from cv_extract_api.rate_limiter import RateLimitStore, get_rate_limiter
from cv_extract_api.validation import InputValidator

logger = structlog.get_logger()


class ExtractionPipeline:
    """Sequences the extraction stages for one request.

    Stages fail fast by raising CVProcessingError subclasses; nothing here
    builds HTTP responses. Validation runs before rate limiting so malformed
    requests do not consume a client's quota.
    """

    def __init__(
        self,
        validator: InputValidator,
        rate_limiter: RateLimitStore,
        invoker: ModelInvoker,
        normalizer: ResponseNormalizer,
        prompt: str = EXTRACTION_PROMPT,
        parse_retry_limit: int | None = None,
    ):
        self.validator = validator
        self.rate_limiter = rate_limiter
        self.invoker = invoker
        self.normalizer = normalizer
        self.prompt = prompt
        self._parse_retry_limit = (
            parse_retry_limit
            if parse_retry_limit is not None
            else get_settings().parse_retry_limit
        )

    async def run(self, body: ProcessCVRequest | None, client_key: str) -> ExtractionResult:
        """Process one request body for ``client_key``."""
        if body is None:
            raise RequestBodyMissing()

        request = self.validator.to_request(body.pdf_base64)
        self.rate_limiter.admit(client_key)

        document_size_bytes.observe(request.size)
        logger.info("CV process request accepted", document_bytes=request.size)

        # Content failures get a bounded number of fresh samples
        content_retries = 0
        while True:
            raw_text = await self.invoker.invoke(request, self.prompt)
            try:
                result = self.normalizer.normalize(raw_text)
            except ContentError as e:
                if content_retries >= self._parse_retry_limit:
                    raise
                content_retries += 1
                logger.warning(
                    "Model output unusable, requesting a new sample",
                    kind=e.kind,
                    error=e.detail,
                    retry=content_retries,
                )
                model_retries_total.labels(
                    provider=self.invoker.client.provider, reason="content"
                ).inc()
                continue

            logger.info(
                "Successfully parsed CV data",
                cv_keys=len(result.cv_data),
                job_keys=len(result.job_data),
            )
            return result


# Global pipeline instance
_pipeline: ExtractionPipeline | None = None


async def get_pipeline() -> ExtractionPipeline:
    """Get or create the global pipeline (FastAPI dependency)."""
    global _pipeline
    if _pipeline is None:
        _pipeline = ExtractionPipeline(
            validator=InputValidator(),
            rate_limiter=get_rate_limiter(),
            invoker=ModelInvoker(await get_model_client()),
            normalizer=ResponseNormalizer(),
        )
    return _pipeline


def reset_pipeline() -> None:
    """Reset the global pipeline (for testing)."""
    global _pipeline
    _pipeline = None
