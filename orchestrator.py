"""Message processing pipeline for inbound patient messages."""

import logging
import threading
import time
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from config.settings import Settings
from config.locale import LocaleConfig, load_locale

# Collaborators
from collaborators.base import RetryQueue, HumanNotifier, PatientContextLookup, OutboundTransport
from collaborators.memory import InMemoryRetryQueue, LoggingNotifier, StaticPatientDirectory

# LLM components
from llm.factory import create_llm_client, LLMProvider
from llm.base_client import BaseLLMClient
from llm.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from llm.prompts import PromptContext
from llm.response_cache import ResponseCache
from llm.retry import RetryPolicy
from llm.service import LLMService, GeneratedReply
from llm.usage import InMemoryUsageLedger, UsageLimits

# Memory components
from memory.context_manager import ConversationContextManager
from memory.models import ConversationMessage, ConversationState
from memory.sqlite_store import ConversationStateStore

# Safety
from safety.escalation import EscalationNotifier
from safety.filter import SafetyFilter

# Agents
from agents.entity_extractor import EntityExtractor
from agents.intent_detector import IntentDetector
from agents.keyword_classifier import KeywordIntentClassifier
from agents.normalizer import MessageNormalizer
from agents.response_templates import (
    ResponseTemplates,
    TemplateEntry,
    LOW_CONFIDENCE_ENTRY,
    ESCALATION_ENTRY,
)

from schemas.collaborators import (
    EscalationRequest,
    InboundMessage,
    PatientContext,
    QueuedMessage,
)
from schemas.conversation import ContextType, Direction, MessageType, message_type_for
from schemas.intent import IntentType, MessageIntent
from schemas.responses import ProcessedMessage, RecommendedResponse, ResponseKind
from schemas.safety import InboundSafetyAnalysis, SafetyContext, Severity
from memory.phone import canonical_phone

logger = logging.getLogger(__name__)

# Intents that end the pending verification / subscription exchange
CONTEXT_CLEARING_INTENTS = {IntentType.ACCEPT, IntentType.DECLINE, IntentType.UNSUBSCRIBE}
CONFIRMATION_CLOSING_INTENTS = {IntentType.CONFIRM_TAKEN, IntentType.CONFIRM_MISSED}


class MessageProcessor:
    """
    Turns one inbound patient message into a reply.

    Normalizes the text, loads the conversation state, classifies intent
    (deterministically in verification, otherwise provider first with a
    keyword fallback), screens for safety, picks a template or generated
    reply, persists the exchange and escalates when automation is not
    enough. Messages from the same patient are processed one at a time.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm_client: Optional[BaseLLMClient] = None,
        store: Optional[ConversationStateStore] = None,
        patient_lookup: Optional[PatientContextLookup] = None,
        notifier: Optional[HumanNotifier] = None,
        retry_queue: Optional[RetryQueue] = None,
        transport: Optional[OutboundTransport] = None,
        locale: Optional[LocaleConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Application settings
            llm_client: Provider client; built from settings when omitted
            store: Conversation state store; built from settings when omitted
            patient_lookup: Patient record lookup
            notifier: Human responder notifier
            retry_queue: Queue for blocked or failed work
            transport: Gateway used by handle() to send replies
            locale: Locale data; loaded from settings when omitted
            sleep: Backoff sleep (injectable for tests)
        """
        self.settings = settings or Settings()
        self.locale = locale or load_locale(self.settings.locale, self.settings.locale_path)

        self.retry_queue = retry_queue if retry_queue is not None else InMemoryRetryQueue()
        self.patient_lookup = patient_lookup or StaticPatientDirectory()
        self.escalation = EscalationNotifier(notifier or LoggingNotifier())
        self.transport = transport

        self.store = store or ConversationStateStore(
            db_path=self.settings.db_path,
            ttl_minutes=self.settings.conversation_ttl_minutes,
        )
        self.context_manager = ConversationContextManager(self.store, max_turns=self.settings.history_limit)

        self.safety_filter = SafetyFilter(locale=self.locale, escalation=self.escalation)

        self.llm_client = llm_client
        if self.llm_client is None:
            self._init_llm_client()

        self.llm_service: Optional[LLMService] = None
        if self.llm_client is not None:
            self._init_llm_service(sleep)

        self._init_agents()

        # Entries vanish once no message for the patient is in flight
        self._patient_locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _init_llm_client(self):
        """Initialize LLM client based on settings."""
        api_key = self.settings.get_llm_api_key()

        if not api_key:
            logger.warning(
                f"No API key for {self.settings.llm_provider}. "
                "Generated replies disabled, using templates and keyword intents."
            )
            return

        try:
            self.llm_client = create_llm_client(
                provider=LLMProvider(self.settings.llm_provider),
                api_key=api_key,
                model=self.settings.llm_model,
                timeout=self.settings.llm_timeout_seconds,
            )
            logger.info(
                f"LLM client initialized: {self.settings.llm_provider} "
                f"({self.llm_client.get_model_name()})"
            )
        except Exception as e:
            logger.error(f"Failed to initialize LLM client: {e}")
            self.llm_client = None

    def _init_llm_service(self, sleep: Callable[[float], None]):
        """Wire usage ledger, circuit breaker, retry policy and cache around the client."""
        s = self.settings
        breaker = None
        if s.circuit_breaker_enabled:
            breaker = CircuitBreaker(
                name="llm",
                config=CircuitBreakerConfig(
                    failure_threshold=s.circuit_failure_threshold,
                    reset_timeout=s.circuit_reset_timeout,
                    success_threshold=s.circuit_success_threshold,
                ),
            )

        self.llm_service = LLMService(
            client=self.llm_client,
            retry_queue=self.retry_queue,
            usage_ledger=InMemoryUsageLedger(UsageLimits(
                daily_token_limit=s.daily_token_limit,
                monthly_token_limit=s.monthly_token_limit,
                hourly_request_limit=s.hourly_request_limit,
                daily_cost_limit=s.daily_cost_limit,
            )),
            circuit_breaker=breaker,
            retry_policy=RetryPolicy(
                max_attempts=s.retry_max_attempts,
                base_delay=s.retry_base_delay,
                max_delay=s.retry_max_delay,
                backoff_factor=s.retry_backoff_factor,
            ),
            safety_filter=self.safety_filter,
            cache=ResponseCache(ttl_hours=s.cache_ttl_hours, max_entries=s.cache_max_entries),
            locale=self.locale,
            temperature=s.temperature,
            max_tokens=s.max_tokens,
            intent_temperature=s.intent_temperature,
            intent_max_tokens=s.intent_max_tokens,
            validation_retries=s.validation_retries,
            cache_min_confidence=s.cache_min_confidence,
            sleep=sleep,
        )

    def _init_agents(self):
        """Initialize message understanding agents."""
        self.normalizer = MessageNormalizer(self.locale)
        self.classifier = KeywordIntentClassifier(self.locale)
        self.extractor = EntityExtractor(self.locale)
        self.templates = ResponseTemplates(self.locale)
        self.intent_detector = IntentDetector(self.classifier, self.extractor, self.llm_service)

    @contextmanager
    def _patient_lock(self, patient_id: str):
        with self._locks_guard:
            lock = self._patient_locks.setdefault(patient_id, threading.Lock())
        with lock:
            yield

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def process_message(self, inbound: InboundMessage) -> ProcessedMessage:
        """
        Process one inbound message.

        Args:
            inbound: Message from the gateway

        Returns:
            ProcessedMessage with the selected reply
        """
        normalized = self.normalizer.normalize(inbound.message)
        patient = self._lookup_patient(inbound.phone_number)
        patient_id = self._resolve_patient_id(inbound, patient)

        with self._patient_lock(patient_id):
            return self._process(inbound, normalized, patient, patient_id)

    def handle(self, inbound: InboundMessage) -> ProcessedMessage:
        """Process a message and deliver the reply; failed delivery is queued."""
        processed = self.process_message(inbound)
        if self.transport is None:
            logger.warning("No outbound transport configured, reply not sent")
            return processed

        reply = processed.response
        try:
            result = self.transport.send(inbound.phone_number, reply.message)
            failure = None if result.success else (result.error or "delivery failed")
        except Exception as e:
            failure = str(e)

        if failure:
            logger.error(f"Failed to deliver reply to {inbound.phone_number}: {failure}")
            self._enqueue(QueuedMessage(
                patient_id=processed.patient_id,
                phone_number=inbound.phone_number,
                message=reply.message,
                priority=reply.priority.value,
                message_type="general",
                metadata={
                    "failure_reason": f"delivery_failed: {failure}",
                    "conversation_id": processed.conversation_id,
                    "queued_at": datetime.now(timezone.utc).isoformat(),
                },
            ))
        return processed

    def should_use_intent_detection(self, normalized: str, state: ConversationState) -> bool:
        """
        Whether a message needs classification rather than a direct answer.

        Classification is used in verification and reminder contexts, or when
        the text carries confirmation, verification or reminder keywords.
        """
        if state.current_context in (ContextType.VERIFICATION, ContextType.REMINDER_CONFIRMATION):
            return True
        keyword_sets = (
            self.locale.confirmation_keywords,
            self.locale.verification_keywords,
            self.locale.keywords_for(IntentType.REMINDER_INQUIRY.value),
        )
        return any(self.classifier.contains_any(normalized, keywords) for keywords in keyword_sets)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _process(
        self,
        inbound: InboundMessage,
        normalized: str,
        patient: Optional[PatientContext],
        patient_id: str,
    ) -> ProcessedMessage:
        state = self._load_state(inbound, patient, patient_id)
        safety_context = SafetyContext(
            patient_id=patient_id,
            phone_number=inbound.phone_number,
            conversation_id=state.id,
            current_context=state.current_context.value,
        )
        inbound_safety = self.safety_filter.analyze_inbound(inbound.message, safety_context)
        prompt_context = self.context_manager.build_prompt_context(
            state, patient, patient_name=inbound.patient_name
        )

        intent, direct = self._classify(normalized, state, prompt_context)
        if inbound_safety.is_emergency and not self._keeps_fixed_reply(state, intent):
            intent = MessageIntent(
                intent=IntentType.EMERGENCY,
                confidence=max(intent.confidence, inbound_safety.emergency.score / 100),
                entities=intent.entities,
            )
        sentiment = self.classifier.sentiment(normalized, intent.intent)

        response, reply = self._select_response(
            inbound, normalized, state, patient, prompt_context, intent, direct, inbound_safety
        )

        self._persist(state, inbound, intent, response, reply)
        self._apply_transition(state, patient_id, intent, response)

        escalated = inbound_safety.escalation_required or bool(
            reply and reply.safety and reply.safety.escalation_required
        )
        reason = None
        if inbound_safety.escalation_required:
            reason = "emergency_detection" if inbound_safety.is_emergency else "inappropriate_content"
        elif escalated:
            reason = "llm_response_violation"
        elif intent.confidence < self.settings.low_confidence_threshold:
            reason = "low_confidence"
            self.escalation.escalate(EscalationRequest(
                patient_id=patient_id,
                phone_number=inbound.phone_number,
                message=inbound.message,
                reason=reason,
                priority="medium",
                intent=intent.intent.value,
                context={
                    "conversation_id": state.id,
                    "current_context": state.current_context.value,
                    "confidence": intent.confidence,
                },
            ))
            escalated = True

        violations = list(inbound_safety.violations)
        if reply and reply.safety:
            violations.extend(reply.safety.violations)

        logger.info(
            f"Processed message for patient {patient_id}: intent={intent.intent.value} "
            f"confidence={intent.confidence:.2f} template={response.template_key} "
            f"generated={response.generated} escalated={escalated}"
        )

        return ProcessedMessage(
            conversation_id=state.id,
            patient_id=patient_id,
            phone_number=inbound.phone_number,
            message=inbound.message,
            normalized_message=normalized,
            intent=intent,
            sentiment=sentiment,
            response=response,
            escalated=escalated,
            escalation_reason=reason,
            violations=violations,
            requires_human_intervention=response.type != ResponseKind.AUTO_REPLY,
        )

    def _lookup_patient(self, phone_number: str) -> Optional[PatientContext]:
        try:
            result = self.patient_lookup.get_patient_context(phone_number)
        except Exception as e:
            logger.error(f"Patient lookup failed for {phone_number}: {e}")
            return None
        return result.context if result.found else None

    @staticmethod
    def _resolve_patient_id(inbound: InboundMessage, patient: Optional[PatientContext]) -> str:
        if inbound.patient_id:
            return inbound.patient_id
        if patient is not None:
            return patient.patient.id
        return f"phone:{canonical_phone(inbound.phone_number)}"

    def _load_state(
        self,
        inbound: InboundMessage,
        patient: Optional[PatientContext],
        patient_id: str,
    ) -> ConversationState:
        state = self.store.find_by_phone_number(inbound.phone_number)
        if state is None or state.patient_id != patient_id:
            default_context = ContextType.GENERAL_INQUIRY
            if patient is not None and patient.patient.verification_status.lower() == "pending":
                default_context = ContextType.VERIFICATION
            state = self.store.get_or_create(patient_id, inbound.phone_number, default_context)

        # Verified patients can't still be waiting on verification
        if (
            patient is not None
            and patient.patient.is_verified
            and state.current_context == ContextType.VERIFICATION
        ):
            logger.info(f"Switching verified patient {patient_id} from verification to general_inquiry")
            state = self.store.switch_context(state.id, ContextType.GENERAL_INQUIRY)
        return state

    def _classify(
        self,
        normalized: str,
        state: ConversationState,
        prompt_context: PromptContext,
    ) -> tuple[MessageIntent, bool]:
        """Returns the intent and whether the message goes to the direct-answer path."""
        entities = self.extractor.extract(normalized)

        if state.current_context == ContextType.VERIFICATION:
            accepted = self.classifier.is_accept(normalized)
            return MessageIntent(
                intent=IntentType.ACCEPT if accepted else IntentType.DECLINE,
                confidence=1.0,
                entities=entities,
            ), False

        threshold = self.settings.confidence_threshold
        if self.classifier.has_unsubscribe_indicator(normalized):
            detected, _ = self.intent_detector.detect(normalized, prompt_context)
            if IntentDetector.is_inconclusive(detected, threshold) and self.classifier.is_strict_unsubscribe(normalized):
                logger.info("Unsubscribe forced by keyword after inconclusive classification")
                return MessageIntent(intent=IntentType.UNSUBSCRIBE, confidence=0.9, entities=entities), False
            return detected, False

        if self.should_use_intent_detection(normalized, state):
            detected, _ = self.intent_detector.detect(normalized, prompt_context)
            return detected, False

        return MessageIntent(intent=IntentType.INQUIRY, confidence=threshold, entities=entities), True

    def _select_response(
        self,
        inbound: InboundMessage,
        normalized: str,
        state: ConversationState,
        patient: Optional[PatientContext],
        prompt_context: PromptContext,
        intent: MessageIntent,
        direct: bool,
        inbound_safety: InboundSafetyAnalysis,
    ) -> tuple[RecommendedResponse, Optional[GeneratedReply]]:
        entry = self.templates.entry(intent.intent)
        if self._keeps_fixed_reply(state, intent):
            return self._template_response(entry, patient), None

        if inbound_safety.is_emergency:
            return self._template_response(self.templates.entry(IntentType.EMERGENCY), patient), None

        if any(v.severity.at_least(Severity.HIGH) for v in inbound_safety.violations):
            return self._template_response(ESCALATION_ENTRY, patient), None

        if not self.templates.generative_allowed(intent.intent):
            return self._template_response(entry, patient), None

        if direct:
            fallback = self.locale.template("default")
            reply = self._generate(lambda: self.llm_service.generate_direct_response(
                inbound.message, prompt_context, fallback_text=fallback, conversation_id=state.id
            ))
            if reply is not None:
                return self._generated_response(reply, TemplateEntry(template_key="default"), patient), reply
            return self._template_response(TemplateEntry(template_key="default"), patient), None

        if intent.confidence >= self.settings.confidence_threshold:
            fallback = self.templates.render_intent(intent.intent, patient)
            reply = self._generate(lambda: self.llm_service.generate_patient_response(
                inbound.message,
                prompt_context,
                intent.intent,
                intent.confidence,
                fallback_text=fallback,
                conversation_id=state.id,
            ))
            if reply is not None:
                return self._generated_response(reply, entry, patient), reply
            return self._template_response(entry, patient), None

        if intent.confidence < self.settings.low_confidence_threshold:
            return self._template_response(LOW_CONFIDENCE_ENTRY, patient), None
        return self._template_response(entry, patient), None

    @staticmethod
    def _keeps_fixed_reply(state: ConversationState, intent: MessageIntent) -> bool:
        """Verification answers and accept/decline/unsubscribe always get their own template."""
        return state.current_context == ContextType.VERIFICATION or intent.intent in CONTEXT_CLEARING_INTENTS

    def _generate(self, call: Callable[[], GeneratedReply]) -> Optional[GeneratedReply]:
        if self.llm_service is None:
            return None
        try:
            return call()
        except Exception as e:
            logger.warning(f"Generated reply unavailable, using template: {e}")
            return None

    def _template_response(
        self,
        entry: TemplateEntry,
        patient: Optional[PatientContext],
    ) -> RecommendedResponse:
        return RecommendedResponse(
            type=entry.kind,
            message=self.templates.render(entry, patient),
            actions=entry.actions,
            priority=entry.priority,
            generated=False,
            template_key=entry.template_key,
        )

    def _generated_response(
        self,
        reply: GeneratedReply,
        entry: TemplateEntry,
        patient: Optional[PatientContext],
    ) -> RecommendedResponse:
        if reply.safety is not None and reply.safety.escalation_required:
            logger.warning("Generated reply required escalation, sending escalation template")
            return self._template_response(ESCALATION_ENTRY, patient)
        if reply.fallback:
            return self._template_response(entry, patient)
        return RecommendedResponse(
            type=entry.kind,
            message=reply.text,
            actions=entry.actions,
            priority=entry.priority,
            generated=True,
            template_key=None,
            generation=reply.metadata,
        )

    def _persist(
        self,
        state: ConversationState,
        inbound: InboundMessage,
        intent: MessageIntent,
        response: RecommendedResponse,
        reply: Optional[GeneratedReply],
    ):
        now = datetime.now(timezone.utc)
        message_type = message_type_for(state.current_context)
        try:
            self.store.append_message(state.id, ConversationMessage(
                message=inbound.message,
                direction=Direction.INBOUND,
                message_type=message_type,
                intent=intent.intent.value,
                confidence=int(round(intent.confidence * 100)),
                processed_at=now,
            ))
        except Exception as e:
            logger.error(f"Failed to persist inbound message for conversation {state.id}: {e}")
            self._enqueue(QueuedMessage(
                patient_id=state.patient_id,
                phone_number=inbound.phone_number,
                message=inbound.message,
                priority="medium",
                message_type=message_type.value,
                metadata={
                    "failure_reason": f"persist_failed: {e}",
                    "direction": Direction.INBOUND.value,
                    "intent": intent.intent.value,
                    "queued_at": now.isoformat(),
                },
            ))

        if not response.generated:
            return

        generation = response.generation
        try:
            self.store.append_message(state.id, ConversationMessage(
                message=response.message,
                direction=Direction.OUTBOUND,
                message_type=MessageType.GENERAL,
                processed_at=now,
                llm_model=generation.model if generation else None,
                llm_tokens_used=generation.tokens_used if generation else None,
                llm_cost=generation.cost if generation else None,
                llm_response_time_ms=generation.response_time_ms if generation else None,
            ))
        except Exception as e:
            logger.error(f"Failed to persist outbound message for conversation {state.id}: {e}")

    def _apply_transition(
        self,
        state: ConversationState,
        patient_id: str,
        intent: MessageIntent,
        response: RecommendedResponse,
    ):
        try:
            if intent.intent in CONTEXT_CLEARING_INTENTS:
                self.store.clear_context(patient_id)
            elif (
                intent.intent in CONFIRMATION_CLOSING_INTENTS
                and state.current_context == ContextType.REMINDER_CONFIRMATION
            ):
                self.store.switch_context(state.id, ContextType.GENERAL_INQUIRY)
            elif response.template_key == LOW_CONFIDENCE_ENTRY.template_key:
                current = self.store.get(state.id)
                self.store.update(
                    state.id,
                    attempt_count=current.attempt_count + 1,
                    last_clarification_sent_at=datetime.now(timezone.utc),
                )
        except Exception as e:
            logger.error(f"Failed to update conversation {state.id} after {intent.intent.value}: {e}")

    def _enqueue(self, item: QueuedMessage):
        try:
            self.retry_queue.enqueue(item)
        except Exception as e:
            logger.error(f"Failed to enqueue message for patient {item.patient_id}: {e}")

    def sweep_expired(self) -> int:
        """Deactivate expired conversation states."""
        return self.store.sweep_expired()

    def close(self, timeout: Optional[float] = 5.0):
        """Wait for pending escalations and stop the notifier pool."""
        self.escalation.drain(timeout)
        self.escalation.shutdown()
