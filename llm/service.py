"""Resilient, cost-governed wrapper around one generative provider."""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel

from collaborators.base import RetryQueue
from config.locale import LocaleConfig, get_locale
from safety.filter import SafetyFilter
from schemas.collaborators import QueuedMessage
from schemas.intent import IntentType, IntentDetectionResult
from schemas.responses import GenerationMetadata
from schemas.safety import SafetyContext, SafetyFilterResult
from .base_client import BaseLLMClient, Message, fold_system_messages
from .circuit_breaker import CircuitBreaker
from .cost import estimate_cost
from .errors import (
    CircuitOpenError,
    PermanentLLMError,
    TransientLLMError,
    UsageLimitExceededError,
)
from .prompts import PromptContext, build_intent_messages, build_response_messages
from .response_cache import ResponseCache
from .retry import RetryPolicy, with_retry, is_transient_error
from .usage import InMemoryUsageLedger, UsageLedger, UsageRecord
from .validation import LanguageValidator

logger = logging.getLogger(__name__)

CACHEABLE_INTENTS = {
    IntentType.CONFIRM_TAKEN,
    IntentType.CONFIRM_MISSED,
    IntentType.CONFIRM_LATER,
}


class LLMRequest(BaseModel):
    """A provider call, serializable so it can be queued and replayed."""
    messages: List[Message]
    patient_id: str
    phone_number: str
    operation: str = "generate"
    temperature: float = 0.7
    max_tokens: int = 1000
    patient_message: Optional[str] = None


class LLMResult(BaseModel):
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    tokens_used: int = 0
    cost: float = 0.0
    response_time_ms: int = 0
    finish_reason: Optional[str] = None

    def metadata(self, cached: bool = False) -> GenerationMetadata:
        return GenerationMetadata(
            model=self.model,
            tokens_used=self.tokens_used,
            cost=self.cost,
            response_time_ms=self.response_time_ms,
            cached=cached,
        )


class GeneratedReply(BaseModel):
    """A patient-facing reply produced by the provider layer."""
    text: str
    generated: bool = True
    cached: bool = False
    fallback: bool = False
    attempts: int = 0
    metadata: Optional[GenerationMetadata] = None
    safety: Optional[SafetyFilterResult] = None


def parse_intent_output(content: str) -> IntentDetectionResult:
    """Parse structured intent output; anything malformed is unknown/0."""
    text = content.strip()

    # Handle potential markdown code blocks
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse intent output as JSON: {e}")
        return IntentDetectionResult()

    if not isinstance(parsed, dict):
        return IntentDetectionResult()

    try:
        confidence = float(parsed.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    entities = parsed.get("entities")

    return IntentDetectionResult(
        intent=IntentType.parse(parsed.get("intent")),
        confidence=min(max(confidence, 0.0), 1.0),
        entities=entities if isinstance(entities, dict) else {},
        reasoning=parsed.get("reasoning"),
    )


class LLMService:
    """
    Orchestrates provider calls.

    Every call passes usage admission, then the circuit breaker wrapping a
    bounded retry policy. Blocked and transiently failed calls are handed to
    the retry queue; permanent failures are raised without queueing.
    """

    def __init__(
        self,
        client: BaseLLMClient,
        retry_queue: RetryQueue,
        usage_ledger: Optional[UsageLedger] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        safety_filter: Optional[SafetyFilter] = None,
        validator: Optional[LanguageValidator] = None,
        cache: Optional[ResponseCache] = None,
        locale: Optional[LocaleConfig] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        intent_temperature: float = 0.3,
        intent_max_tokens: int = 200,
        validation_retries: int = 1,
        cache_min_confidence: float = 0.8,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.retry_queue = retry_queue
        self.usage_ledger = usage_ledger or InMemoryUsageLedger()
        self.circuit_breaker = circuit_breaker
        self.retry_policy = retry_policy or RetryPolicy()
        self.locale = locale or get_locale()
        self.safety_filter = safety_filter or SafetyFilter(locale=self.locale)
        self.validator = validator or LanguageValidator(locale=self.locale)
        self.cache = cache
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.intent_temperature = intent_temperature
        self.intent_max_tokens = intent_max_tokens
        self.validation_retries = validation_retries
        self.cache_min_confidence = cache_min_confidence
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Core call path
    # ------------------------------------------------------------------

    def generate(self, request: LLMRequest, enqueue_on_failure: bool = True) -> LLMResult:
        """
        Perform one provider call through admission, breaker and retry.

        Args:
            request: The call to make
            enqueue_on_failure: Hand blocked/transient failures to the retry queue

        Returns:
            LLMResult with content, usage and cost

        Raises:
            UsageLimitExceededError: A usage ceiling blocked the call
            CircuitOpenError: The breaker is open
            TransientLLMError: Retries were exhausted
            PermanentLLMError: The provider rejected the request
        """
        check = self.usage_ledger.check()
        if not check.allowed:
            logger.warning(f"LLM call blocked by usage limits: {check.reason}")
            queued_id = self._enqueue(request, "Usage limits exceeded") if enqueue_on_failure else None
            raise UsageLimitExceededError(check.reason or "usage limits", queued_id)

        if self.circuit_breaker is not None and self.circuit_breaker.is_open():
            queued_id = self._enqueue(request, "LLM circuit breaker open") if enqueue_on_failure else None
            raise CircuitOpenError(self.circuit_breaker.name, self.circuit_breaker.retry_after(), queued_id)

        messages = request.messages
        if not self.client.supports_system_role:
            messages = fold_system_messages(messages)

        def call():
            return self.client.chat(
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )

        def call_with_retry():
            return with_retry(call, self.retry_policy, sleep=self.sleep)

        started = time.monotonic()
        try:
            if self.circuit_breaker is not None:
                response = self.circuit_breaker.call(call_with_retry)
            else:
                response = call_with_retry()
        except CircuitOpenError as e:
            if enqueue_on_failure:
                e.queued_id = self._enqueue(request, "LLM circuit breaker open")
            raise
        except Exception as e:
            if not is_transient_error(e):
                logger.error(f"LLM {request.operation} failed permanently: {e}")
                if isinstance(e, PermanentLLMError):
                    raise
                raise PermanentLLMError(str(e)) from e
            logger.error(f"LLM {request.operation} failed after retries: {e}")
            if enqueue_on_failure:
                self._enqueue(request, str(e))
            if isinstance(e, TransientLLMError):
                raise
            raise TransientLLMError(str(e)) from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        model = response.model or self.client.get_model_name()
        usage = response.usage or {}
        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)
        total_tokens = usage.get("total_tokens", prompt_tokens + completion_tokens)
        cost = estimate_cost(prompt_tokens, completion_tokens, model)

        self.usage_ledger.record(UsageRecord(
            timestamp=time.time(),
            tokens=total_tokens,
            cost=cost,
            model=model,
            latency_ms=elapsed_ms,
            operation=request.operation,
        ))
        logger.info(
            f"LLM {request.operation} ok: model={model} tokens={total_tokens} "
            f"cost=${cost:.5f} latency={elapsed_ms}ms"
        )

        return LLMResult(
            content=response.content,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            tokens_used=total_tokens,
            cost=cost,
            response_time_ms=elapsed_ms,
            finish_reason=response.finish_reason,
        )

    def replay(self, queued: QueuedMessage) -> LLMResult:
        """Run a queued request through the live path without re-queueing it."""
        original = queued.metadata.get("original_request")
        if not original:
            raise PermanentLLMError("Queued item carries no original request")
        request = LLMRequest(**original)
        logger.info(f"Replaying queued {request.operation} for patient {request.patient_id}")
        return self.generate(request, enqueue_on_failure=False)

    def _enqueue(self, request: LLMRequest, reason: str) -> Optional[str]:
        item = QueuedMessage(
            patient_id=request.patient_id,
            phone_number=request.phone_number,
            message=request.patient_message or "",
            priority="medium",
            message_type="general",
            max_retries=3,
            metadata={
                "original_request": request.model_dump(mode="json"),
                "failure_reason": reason,
                "queued_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        try:
            queued_id = self.retry_queue.enqueue(item)
            logger.info(f"Queued LLM {request.operation} for patient {request.patient_id}: {reason}")
            return queued_id
        except Exception as e:
            logger.error(f"Failed to enqueue LLM request for patient {request.patient_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def detect_intent(self, message: str, context: PromptContext) -> IntentDetectionResult:
        """
        Classify a patient message.

        Provider failures propagate so the caller can fall back to keywords;
        malformed output yields unknown with confidence 0.
        """
        request = LLMRequest(
            messages=build_intent_messages(message, context),
            patient_id=context.patient_id,
            phone_number=context.phone_number,
            operation="intent",
            temperature=self.intent_temperature,
            max_tokens=self.intent_max_tokens,
            patient_message=message,
        )
        result = self.generate(request)
        detection = parse_intent_output(result.content)
        logger.info(
            f"LLM intent: {detection.intent.value} ({detection.confidence:.2f}) "
            f"reasoning={detection.reasoning or 'N/A'}"
        )
        return detection

    def generate_patient_response(
        self,
        message: str,
        context: PromptContext,
        intent: IntentType,
        confidence: float,
        fallback_text: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> GeneratedReply:
        """
        Generate, validate and safety-screen a reply for a classified message.

        Cacheable intents above the confidence threshold are served from the
        response cache when possible; cache hits are screened again.
        """
        safety_context = SafetyContext(
            patient_id=context.patient_id,
            phone_number=context.phone_number,
            conversation_id=conversation_id,
            current_context=context.current_context,
        )
        use_cache = (
            self.cache is not None
            and intent in CACHEABLE_INTENTS
            and confidence >= self.cache_min_confidence
        )
        fingerprint = context.fingerprint()

        if use_cache:
            hit = self.cache.get(intent.value, fingerprint)
            if hit is not None:
                safety = self.safety_filter.filter_generated(hit, safety_context)
                if safety.is_safe:
                    return GeneratedReply(
                        text=hit,
                        cached=True,
                        metadata=GenerationMetadata(model=self.client.get_model_name(), cached=True),
                        safety=safety,
                    )
                logger.warning("Cached reply failed safety screening, regenerating")

        reply = self._generate_validated(
            message, context, safety_context, intent.value, confidence, fallback_text
        )

        if use_cache and reply.generated and not reply.fallback and reply.safety and reply.safety.is_safe:
            self.cache.set(intent.value, fingerprint, reply.text)
        return reply

    def generate_direct_response(
        self,
        message: str,
        context: PromptContext,
        fallback_text: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> GeneratedReply:
        """Answer a general inquiry without prior classification."""
        safety_context = SafetyContext(
            patient_id=context.patient_id,
            phone_number=context.phone_number,
            conversation_id=conversation_id,
            current_context=context.current_context,
        )
        return self._generate_validated(message, context, safety_context, None, None, fallback_text)

    def _generate_validated(
        self,
        message: str,
        context: PromptContext,
        safety_context: SafetyContext,
        intent: Optional[str],
        confidence: Optional[float],
        fallback_text: Optional[str],
    ) -> GeneratedReply:
        reasons: list[str] = []
        attempts = 0
        for attempt in range(self.validation_retries + 1):
            attempts += 1
            request = LLMRequest(
                messages=build_response_messages(
                    message, context, intent, confidence, strict_language=attempt > 0
                ),
                patient_id=context.patient_id,
                phone_number=context.phone_number,
                operation="response",
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                patient_message=message,
            )
            result = self.generate(request)
            validation = self.validator.validate(result.content)
            if validation.is_valid:
                text = result.content.strip()
                safety = self.safety_filter.filter_generated(text, safety_context)
                if not safety.is_safe:
                    text = safety.sanitized_text or text
                return GeneratedReply(
                    text=text,
                    attempts=attempts,
                    metadata=result.metadata(),
                    safety=safety,
                )
            reasons = validation.reasons
            logger.warning(f"Reply validation failed (attempt {attempts}): {reasons}")

        logger.warning(f"Reply still invalid after {attempts} attempts, using template: {reasons}")
        self.usage_ledger.record(UsageRecord(
            timestamp=time.time(),
            model=self.client.get_model_name(),
            operation="fallback",
        ))
        return GeneratedReply(
            text=fallback_text or self.locale.template("default"),
            generated=False,
            fallback=True,
            attempts=attempts,
        )
