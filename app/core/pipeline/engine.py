"""
Conversation Pipeline.

Processes one canonical inbound message end to end:

    validate -> lock conversation -> dedup -> resolve conversation
    -> classify -> extract -> stage / confidence / actions
    -> gate -> compose -> persist -> dispatch -> update context -> audit

NLU, booking and dispatch failures degrade gracefully; persistence
failures end the run with a failure result. Every run leaves exactly one
audit entry, except duplicate deliveries which leave none.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

from app.channels.adapter import ChannelAdapter
from app.channels.config import ChannelInstance
from app.channels.types import IncomingMessage, MessageDirection, ValidationResult
from app.core.audit.logger import AuditLogger
from app.core.conversation.models import (
    AIContext,
    Conversation,
    ConversationStage,
    NextAction,
    StoredMessage,
)
from app.core.conversation.store import ConversationStore
from app.core.errors import ConversationBusyError
from app.core.intelligence.entities.extractor import EntityExtractor
from app.core.intelligence.entities.types import ExtractedEntities
from app.core.intelligence.intent.classifier import IntentClassifier
from app.core.intelligence.intent.types import MessageIntent
from app.infra.locks import ConversationLocks
from .gating import should_auto_reply
from .response import ResponseComposer
from .stages import (
    calculate_confidence,
    compute_stage,
    determine_next_actions,
    resolve_stage,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class ProcessingResult:
    """Outcome of processing one inbound message."""

    success: bool
    intent: MessageIntent
    entities: ExtractedEntities
    response: str
    next_actions: list[NextAction]
    confidence: float
    error: Optional[str] = None
    conversation_id: Optional[str] = None
    stage: Optional[ConversationStage] = None
    response_sent: bool = False
    duplicate: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        result = {
            "success": self.success,
            "intent": self.intent.value,
            "entities": self.entities.to_dict(),
            "response": self.response,
            "next_actions": [action.value for action in self.next_actions],
            "confidence": self.confidence,
            "conversation_id": self.conversation_id,
            "stage": self.stage.value if self.stage else None,
            "response_sent": self.response_sent,
            "duplicate": self.duplicate,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class _Run:
    """State of one pipeline invocation."""

    message: IncomingMessage
    instance: ChannelInstance
    adapter: ChannelAdapter
    cancelled: bool = False
    conversation_id: Optional[str] = None


def validate_message(message: IncomingMessage, instance: ChannelInstance) -> ValidationResult:
    """Channel-independent checks of a canonical message."""
    errors = []

    if not message.id or not message.id.strip():
        errors.append("Message ID is required")
    if not message.conversation_id or not message.conversation_id.strip():
        errors.append("Conversation ID is required")
    if message.sender is None or not (message.sender.id or "").strip():
        errors.append("Sender ID is required")
    if message.content is None or not message.content.has_payload:
        errors.append("Message content is required")
    if message.instance_id and message.instance_id != instance.id:
        errors.append("Message belongs to a different channel instance")

    return ValidationResult(valid=not errors, errors=errors)


class ConversationPipeline:
    """
    Orchestrates message processing for every channel.

    All collaborators are injected; the pipeline keeps no per-tenant state.
    Runs for the same (instance, contact) are serialized by `locks`.
    """

    def __init__(
        self,
        store: ConversationStore,
        audit_logger: AuditLogger,
        classifier: IntentClassifier,
        extractor: EntityExtractor,
        composer: ResponseComposer,
        locks: Optional[ConversationLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
        nlu_timeout: float = 8.0,
        dispatch_timeout: float = 15.0,
    ):
        self.store = store
        self.audit = audit_logger
        self.classifier = classifier
        self.extractor = extractor
        self.composer = composer
        self.locks = locks or ConversationLocks()
        self.clock = clock
        self.nlu_timeout = nlu_timeout
        self.dispatch_timeout = dispatch_timeout
        self._tasks: set[asyncio.Task] = set()

    # ==================================
    # Entry points
    # ==================================

    async def process(
        self,
        message: IncomingMessage,
        instance: ChannelInstance,
        adapter: ChannelAdapter,
    ) -> ProcessingResult:
        """
        Process one inbound message.

        The run continues if the caller is cancelled: the message is still
        persisted and audited, only the outgoing dispatch is skipped.

        Args:
            message: Canonical message produced by the adapter
            instance: Channel instance the message arrived on
            adapter: Adapter used to format and send the reply

        Returns:
            ProcessingResult
        """
        run = _Run(message=message, instance=instance, adapter=adapter)
        task = asyncio.ensure_future(self._run(run))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            run.cancelled = True
            logger.warning(
                f"Caller cancelled while processing message {message.id}; "
                f"finishing without dispatch"
            )
            raise

    async def reset_context(
        self,
        conversation_id: str,
        instance: ChannelInstance,
        staff_id: str,
    ) -> Optional[Conversation]:
        """
        Reset a conversation's AI context to the initial state.

        This is how staff clear an escalated emergency.

        Returns:
            The reset conversation, or None if it does not exist
        """
        conversation = await self.store.get(conversation_id)
        if conversation is None:
            return None

        async with self.locks.hold(conversation.instance_id, conversation.contact.external_id):
            current = await self.store.get(conversation_id)
            previous_stage = (current or conversation).ai_context.conversation_stage
            conversation = await self.store.reset_context(conversation_id)

        await self.audit.log_context_reset(
            instance=instance,
            conversation_id=conversation_id,
            staff_id=staff_id,
            previous_stage=previous_stage.value,
        )
        logger.info(f"AI context of {conversation_id} reset by staff {staff_id}")
        return conversation

    async def link_patient(self, conversation_id: str, patient_id: str) -> Optional[Conversation]:
        """Record the patient a conversation belongs to, under its lock."""
        conversation = await self.store.get(conversation_id)
        if conversation is None:
            return None

        async with self.locks.hold(conversation.instance_id, conversation.contact.external_id):
            conversation = await self.store.get(conversation_id)
            if conversation is None:
                return None
            conversation.patient_id = patient_id
            await self.store.save(conversation)

        logger.info(f"Conversation {conversation_id} linked to patient {patient_id}")
        return conversation

    async def drain(self) -> None:
        """Wait for runs that outlived their callers."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ==================================
    # Run
    # ==================================

    async def _run(self, run: _Run) -> ProcessingResult:
        message, instance = run.message, run.instance

        validation = validate_message(message, instance)
        try:
            validation = validation.merge(run.adapter.validate_message(message))
        except Exception as e:
            logger.warning(f"Adapter validation raised for message {message.id}: {e}")
            validation = validation.merge(ValidationResult(valid=False, errors=[str(e)]))

        if not validation.valid:
            logger.info(f"Message {message.id!r} rejected: {validation.errors}")
            await self.audit.log_validation_failed(
                instance=instance,
                message_id=message.id,
                sender_id=message.sender.id if message.sender else None,
                errors=validation.errors,
            )
            return ProcessingResult(
                success=False,
                intent=MessageIntent.UNKNOWN,
                entities=ExtractedEntities(),
                response="",
                next_actions=[NextAction.ESCALATE_TO_HUMAN],
                confidence=0.0,
                error=f"Invalid message: {', '.join(validation.errors)}",
            )

        try:
            async with self.locks.hold(instance.id, message.sender.id):
                return await self._run_locked(run)
        except ConversationBusyError as e:
            logger.error(f"Message {message.id} not processed: {e}")
            return await self._failure(run, str(e))

    async def _run_locked(self, run: _Run) -> ProcessingResult:
        message = run.message

        try:
            if await self.store.message_exists(message.id, message.channel_type):
                logger.info(f"Duplicate message {message.id} ignored")
                return ProcessingResult(
                    success=True,
                    intent=MessageIntent.UNKNOWN,
                    entities=ExtractedEntities(),
                    response="",
                    next_actions=[],
                    confidence=0.0,
                    duplicate=True,
                )

            conversation, created = await self.store.get_or_create_active(
                instance_id=run.instance.id,
                channel_type=message.channel_type,
                sender=message.sender,
            )
            run.conversation_id = conversation.id
            return await self._handle(run, conversation, created)

        except Exception as e:
            logger.exception(f"Processing failed for message {message.id}: {e}")
            return await self._failure(run, str(e) or e.__class__.__name__)

    async def _handle(
        self,
        run: _Run,
        conversation: Conversation,
        created: bool,
    ) -> ProcessingResult:
        message, instance = run.message, run.instance
        text = message.text
        previous = conversation.ai_context
        context = previous.to_dict()

        intent = await self._classify(text, context, message.id)
        entities = await self._extract(text, intent, context, message.id)

        stage = resolve_stage(previous.conversation_stage, compute_stage(intent, entities))
        confidence = calculate_confidence(intent, entities)
        actions = determine_next_actions(intent, entities)

        now = self.clock()
        response = ""
        if should_auto_reply(intent, entities, instance.config, now):
            composed = await self.composer.compose(
                intent=intent,
                entities=entities,
                conversation=conversation,
                instance=instance,
                user_message=text,
            )
            response = composed.text
            for action in composed.extra_actions:
                if action not in actions:
                    actions.append(action)
        else:
            logger.info(f"Auto-reply suppressed for {message.id} (intent={intent.value})")

        await self.store.add_message(
            StoredMessage(
                id=message.id,
                conversation_id=conversation.id,
                channel_type=message.channel_type,
                direction=MessageDirection.INCOMING,
                content=message.content,
                sender=message.sender,
                timestamp=message.timestamp,
                metadata={
                    **message.metadata,
                    "external_conversation_id": message.conversation_id,
                },
            )
        )
        stored = 1

        response_sent = False
        dispatch_error = None
        if response and instance.config.auto_reply:
            response_sent, dispatch_error, persisted = await self._dispatch(
                run, conversation, response, intent, entities
            )
            stored += persisted

        conversation.ai_context = AIContext(
            current_intent=intent,
            extracted_entities=entities,
            conversation_stage=stage,
            pending_actions=list(actions),
            confidence_score=confidence,
        )
        conversation.message_count += stored
        conversation.updated_at = now
        await self.store.save(conversation)

        details = {
            "message_id": message.id,
            "intent": intent.value,
            "confidence": confidence,
            "previous_stage": previous.conversation_stage.value,
            "stage": stage.value,
            "actions": [action.value for action in actions],
            "response_sent": response_sent,
            "conversation_created": created,
        }
        if dispatch_error:
            details["dispatch_error"] = dispatch_error
        await self.audit.log_message_processed(
            instance=instance,
            conversation_id=conversation.id,
            sender_id=message.sender.id,
            details=details,
        )

        logger.info(
            f"Processed {message.id}: intent={intent.value} stage={stage.value} "
            f"confidence={confidence:.2f} sent={response_sent}"
        )

        return ProcessingResult(
            success=True,
            intent=intent,
            entities=entities,
            response=response,
            next_actions=actions,
            confidence=confidence,
            conversation_id=conversation.id,
            stage=stage,
            response_sent=response_sent,
        )

    # ==================================
    # Steps
    # ==================================

    async def _classify(self, text: str, context: dict, message_id: str) -> MessageIntent:
        """Intent of a message, `unknown` on any failure or timeout."""
        if not text:
            return MessageIntent.UNKNOWN
        try:
            result = await asyncio.wait_for(
                self.classifier.classify(text, context),
                timeout=self.nlu_timeout,
            )
            return result.intent
        except asyncio.TimeoutError:
            logger.warning(f"Intent classification timed out for {message_id}")
        except Exception as e:
            logger.warning(f"Intent classification failed for {message_id}: {e}")
        return MessageIntent.UNKNOWN

    async def _extract(
        self,
        text: str,
        intent: MessageIntent,
        context: dict,
        message_id: str,
    ) -> ExtractedEntities:
        """Entities of a message, empty on any failure or timeout."""
        if not text:
            return ExtractedEntities()
        try:
            return await asyncio.wait_for(
                self.extractor.extract(text, intent, context),
                timeout=self.nlu_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Entity extraction timed out for {message_id}")
        except Exception as e:
            logger.warning(f"Entity extraction failed for {message_id}: {e}")
        return ExtractedEntities()

    async def _dispatch(
        self,
        run: _Run,
        conversation: Conversation,
        response: str,
        intent: MessageIntent,
        entities: ExtractedEntities,
    ) -> tuple[bool, Optional[str], int]:
        """
        Format, persist and send the reply.

        Returns:
            (sent, dispatch error, number of messages persisted)
        """
        message = run.message

        try:
            outgoing = run.adapter.format_response(
                response,
                {
                    "conversation_id": message.conversation_id,
                    "recipient_id": message.sender.id,
                    "intent": intent.value,
                    "entities": entities.to_dict(),
                },
            )
        except Exception as e:
            logger.error(f"Formatting reply to {message.id} failed: {e}")
            return False, f"format failed: {e}", 0

        if outgoing.reply_to is None:
            outgoing.reply_to = message.id

        await self.store.add_message(
            StoredMessage(
                id=f"out-{uuid4()}",
                conversation_id=conversation.id,
                channel_type=message.channel_type,
                direction=MessageDirection.OUTGOING,
                content=outgoing.content,
                metadata={"reply_to": message.id},
            )
        )

        if run.cancelled:
            logger.warning(f"Dispatch of reply to {message.id} skipped: caller cancelled")
            return False, "cancelled before dispatch", 1

        try:
            await asyncio.wait_for(
                run.adapter.send_message(outgoing),
                timeout=self.dispatch_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Dispatch of reply to {message.id} timed out")
            return False, "dispatch timed out", 1
        except Exception as e:
            logger.error(f"Dispatch of reply to {message.id} failed: {e}")
            return False, str(e) or e.__class__.__name__, 1

        return True, None, 1

    async def _failure(self, run: _Run, error: str) -> ProcessingResult:
        """Failure result for a run that passed validation."""
        await self.audit.log_processing_failed(
            instance=run.instance,
            message_id=run.message.id,
            sender_id=run.message.sender.id,
            error=error,
            conversation_id=run.conversation_id,
        )
        return ProcessingResult(
            success=False,
            intent=MessageIntent.UNKNOWN,
            entities=ExtractedEntities(),
            response=self.composer.error_response(),
            next_actions=[NextAction.ESCALATE_TO_HUMAN],
            confidence=0.0,
            error=error,
            conversation_id=run.conversation_id,
        )
