"""
Conversation turn engine.

Turns a finalized utterance into a ``ConversationReply``. Intent and the call
control flags (transfer, end call) come from keyword matching so that they are
available even when the language model is down; the reply text comes from the
language model when one is configured and from the intent template otherwise.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from voice_relay.bot.language_model import LanguageModel
from voice_relay.config.constants import (
    EMPTY_REPLY_FALLBACK,
    LOGGER_NAME,
    MAX_REPLY_CHARS,
    TURN_FAILURE_FALLBACK,
)
from voice_relay.errors import TurnGenerationFailure
from voice_relay.models.conversation import (
    AgentProfile,
    ConversationReply,
    DialogueHistory,
    DialogueTurn,
)

logger = logging.getLogger(LOGGER_NAME)

RESPONSE_PREFIX = "I understand. "

ROLE_LABEL_PATTERN = re.compile(r"^(Assistant:|AI:|Bot:)\s*", re.IGNORECASE)


@dataclass(frozen=True)
class IntentMatch:
    intent: str
    template: str
    confidence: float
    should_transfer: bool = False
    should_end_call: bool = False


def _mentions(text: str, phrases: Iterable[str], whole_word: bool = False) -> bool:
    for phrase in phrases:
        pattern = rf"\b{re.escape(phrase)}\b" if whole_word else rf"\b{re.escape(phrase)}"
        if re.search(pattern, text):
            return True
    return False


# Checked in order; the first rule that matches wins.
# (intent, keywords, whole_word, confidence, should_transfer, should_end_call)
INTENT_RULES: List[Tuple[str, Tuple[str, ...], bool, float, bool, bool]] = [
    ("transfer_request", ("human", "person", "representative"), False, 0.9, True, False),
    ("not_interested", ("not interested", "no thank", "busy"), False, 0.8, False, True),
    ("pricing_inquiry", ("price", "cost", "expensive"), False, 0.8, True, False),
    ("business_inquiry", ("business", "service", "help"), False, 0.8, False, False),
    ("greeting", ("hello", "hi", "hey"), True, 0.9, False, False),
]


def _template_for(intent: str, system_prompt: str) -> str:
    prompt = system_prompt.lower()
    if intent == "transfer_request":
        return (
            f"{RESPONSE_PREFIX}Of course! Let me connect you with one of our human "
            "representatives who can provide more detailed assistance."
        )
    if intent == "not_interested":
        return (
            f"{RESPONSE_PREFIX}I understand you're not interested right now. Thank you for "
            "your time, and please feel free to reach out if your needs change. Have a great day!"
        )
    if intent == "pricing_inquiry":
        return (
            f"{RESPONSE_PREFIX}I understand you're interested in pricing information. Let me "
            "connect you with someone who can provide detailed pricing based on your specific needs."
        )
    if intent == "business_inquiry":
        return (
            f"{RESPONSE_PREFIX}I'd be happy to help you with that. Can you tell me more about "
            "what specific assistance you're looking for?"
        )
    if intent == "greeting":
        if "business" in prompt:
            return "Hello! Thank you for connecting. I'm here to help with your business needs."
        return "Hello! Thank you for connecting. How can I assist you today?"
    if "sales" in prompt:
        return (
            f"{RESPONSE_PREFIX}I'd love to learn more about how we can help your business grow. "
            "What challenges are you currently facing?"
        )
    return f"{RESPONSE_PREFIX}That's interesting! Can you tell me more about that so I can better assist you?"


def derive_intent(utterance: str, system_prompt: str = "") -> IntentMatch:
    """
    Classify an utterance by keyword.

    Args:
        utterance: What the user said
        system_prompt: Agent system prompt, used only to pick the template wording

    Returns:
        IntentMatch: intent, reply template, confidence and call control flags
    """
    text = utterance.lower().strip()
    for intent, keywords, whole_word, confidence, transfer, end_call in INTENT_RULES:
        if _mentions(text, keywords, whole_word):
            return IntentMatch(
                intent=intent,
                template=_template_for(intent, system_prompt),
                confidence=confidence,
                should_transfer=transfer,
                should_end_call=end_call,
            )
    return IntentMatch(
        intent="general_inquiry",
        template=_template_for("general_inquiry", system_prompt),
        confidence=0.6,
    )


def build_prompt(system_prompt: str, history: Iterable[DialogueTurn], utterance: str) -> str:
    """Serialize the system prompt, prior turns and the new utterance."""
    lines = [system_prompt, ""]
    for turn in history:
        label = "Human" if turn.role == "user" else "Assistant"
        lines.append(f"{label}: {turn.text}")
    lines.append(f"Human: {utterance}")
    lines.append("Assistant:")
    return "\n".join(lines)


def postprocess_reply(raw: str, prompt: str = "") -> str:
    """
    Clean up generated text for speech.

    Strips an echoed prompt and a leading role label, truncates long replies and
    substitutes a fallback for empty output.
    """
    text = (raw or "").strip()
    if prompt:
        text = text.replace(prompt, "").strip()
    text = ROLE_LABEL_PATTERN.sub("", text).strip()
    if len(text) > MAX_REPLY_CHARS:
        text = text[:MAX_REPLY_CHARS] + "..."
    return text or EMPTY_REPLY_FALLBACK


class ConversationTurnEngine:
    """Runs one conversational turn at a time against a session's history."""

    def __init__(
        self,
        profile: AgentProfile,
        history: Optional[DialogueHistory] = None,
        language_model: Optional[LanguageModel] = None,
        session_id: str = "",
    ):
        self.profile = profile
        self.history = history if history is not None else DialogueHistory()
        self.language_model = language_model
        self.session_id = session_id

    async def on_final_transcript(self, text: str) -> ConversationReply:
        """
        Produce the reply to a finalized utterance.

        Language model failures are logged and answered with a fallback phrase;
        this method does not raise for them.
        """
        utterance = text.strip()
        match = derive_intent(utterance, self.profile.system_prompt)
        prior_turns = self.history.turns()
        self.history.append("user", utterance)

        if self.language_model is None:
            reply_text = match.template
        else:
            prompt = build_prompt(self.profile.system_prompt, prior_turns, utterance)
            try:
                generated = await self.language_model.generate(
                    prompt,
                    temperature=self.profile.temperature,
                    max_new_tokens=self.profile.max_reply_tokens,
                )
                reply_text = postprocess_reply(generated, prompt)
            except TurnGenerationFailure as e:
                logger.error(f"[{self.session_id}] Turn generation failed: {e}")
                reply_text = TURN_FAILURE_FALLBACK
            except Exception as e:
                logger.error(f"[{self.session_id}] Turn generation failed: {type(e).__name__}: {e}", exc_info=True)
                reply_text = TURN_FAILURE_FALLBACK

        self.history.append("assistant", reply_text)
        logger.info(f"[{self.session_id}] Reply ({match.intent}): {reply_text[:100]}")

        return ConversationReply(
            text=reply_text,
            intent=match.intent,
            confidence=match.confidence,
            should_transfer=match.should_transfer,
            should_end_call=match.should_end_call,
        )
