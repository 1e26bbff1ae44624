import asyncio
from unittest.mock import AsyncMock

import pytest

from voice_relay.bot.turn_engine import (
    ConversationTurnEngine,
    build_prompt,
    derive_intent,
    postprocess_reply,
)
from voice_relay.config.constants import EMPTY_REPLY_FALLBACK, TURN_FAILURE_FALLBACK
from voice_relay.errors import TurnGenerationFailure
from voice_relay.models.conversation import DEFAULT_PROFILE, AgentProfile, DialogueTurn


@pytest.mark.parametrize(
    "utterance, intent",
    [
        ("Can I talk to a human?", "transfer_request"),
        ("I want a real person please", "transfer_request"),
        ("Get me a representative", "transfer_request"),
        ("I'm not interested", "not_interested"),
        ("No thanks, bye", "not_interested"),
        ("I'm busy right now", "not_interested"),
        ("What's the price?", "pricing_inquiry"),
        ("How much does it cost", "pricing_inquiry"),
        ("That sounds expensive", "pricing_inquiry"),
        ("Tell me about your service", "business_inquiry"),
        ("I need help with my business", "business_inquiry"),
        ("Hello there", "greeting"),
        ("hi", "greeting"),
        ("Hey!", "greeting"),
        ("What's the weather like?", "general_inquiry"),
    ],
)
def test_derive_intent(utterance, intent):
    assert derive_intent(utterance).intent == intent


def test_transfer_request_flags():
    """Test asking for a human transfers the call and does not end it"""
    for utterance in ("human", "representative"):
        match = derive_intent(utterance)
        assert match.should_transfer
        assert not match.should_end_call


def test_not_interested_ends_call():
    match = derive_intent("not interested")
    assert match.should_end_call
    assert not match.should_transfer


def test_transfer_takes_priority_over_greeting():
    assert derive_intent("Hi, can I speak to a person?").intent == "transfer_request"


def test_greeting_needs_a_whole_word():
    """Test words that merely contain 'hi' are not greetings"""
    assert derive_intent("this is the thing").intent == "general_inquiry"


def test_templates_follow_system_prompt():
    business = derive_intent("hello", "You help with business questions")
    assert "business needs" in business.template
    sales = derive_intent("the weather", "You are a sales agent")
    assert "grow" in sales.template


def test_build_prompt_format():
    history = [DialogueTurn("user", "hi"), DialogueTurn("assistant", "Hello!")]
    prompt = build_prompt("Be nice.", history, "how are you")
    assert prompt == "Be nice.\n\nHuman: hi\nAssistant: Hello!\nHuman: how are you\nAssistant:"


def test_postprocess_strips_prompt_and_role_label():
    prompt = "Be nice.\n\nHuman: hi\nAssistant:"
    assert postprocess_reply(prompt + " Hi there!", prompt) == "Hi there!"
    assert postprocess_reply("assistant: Sure thing") == "Sure thing"
    assert postprocess_reply("AI:   Okay") == "Okay"
    assert postprocess_reply("Bot: Yes") == "Yes"


def test_postprocess_truncates_long_replies():
    reply = postprocess_reply("a" * 500)
    assert reply == "a" * 300 + "..."


def test_postprocess_empty_uses_fallback():
    assert postprocess_reply("") == EMPTY_REPLY_FALLBACK
    assert postprocess_reply("Assistant:") == EMPTY_REPLY_FALLBACK


@pytest.mark.asyncio
async def test_demo_mode_uses_intent_template():
    engine = ConversationTurnEngine(DEFAULT_PROFILE)
    reply = await engine.on_final_transcript("hello")
    assert reply.intent == "greeting"
    assert reply.text.startswith("Hello! Thank you for connecting.")
    assert [turn.role for turn in engine.history] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_language_model_reply_and_prompt():
    model = AsyncMock()
    model.generate.return_value = "Assistant: Glad to help!"
    profile = AgentProfile(name="Test", system_prompt="Be brief.", temperature=0.5, max_reply_tokens=42)
    engine = ConversationTurnEngine(profile, language_model=model)

    reply = await engine.on_final_transcript("  I need help  ")

    assert reply.text == "Glad to help!"
    assert reply.intent == "business_inquiry"
    prompt = model.generate.call_args.args[0]
    assert prompt == "Be brief.\n\nHuman: I need help\nAssistant:"
    assert model.generate.call_args.kwargs == {"temperature": 0.5, "max_new_tokens": 42}


@pytest.mark.asyncio
async def test_language_model_failure_uses_fallback_but_keeps_flags():
    """Test a failed model call is masked and control flags still apply"""
    model = AsyncMock()
    model.generate.side_effect = TurnGenerationFailure("boom")
    engine = ConversationTurnEngine(DEFAULT_PROFILE, language_model=model)

    reply = await engine.on_final_transcript("I'm not interested")

    assert reply.text == TURN_FAILURE_FALLBACK
    assert reply.should_end_call
    assert engine.history.turns()[-1].text == TURN_FAILURE_FALLBACK


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [asyncio.TimeoutError(), RuntimeError("client bug"), KeyError("generated_text")])
async def test_unexpected_model_error_uses_fallback(error):
    model = AsyncMock()
    model.generate.side_effect = error
    engine = ConversationTurnEngine(DEFAULT_PROFILE, language_model=model)

    reply = await engine.on_final_transcript("hello")

    assert reply.text == TURN_FAILURE_FALLBACK
    assert reply.intent == "greeting"
    assert [turn.role for turn in engine.history] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_history_stays_bounded():
    engine = ConversationTurnEngine(DEFAULT_PROFILE)
    for n in range(25):
        await engine.on_final_transcript(f"message {n}")
        assert len(engine.history) <= 10
    assert engine.history.turns()[-1].role == "assistant"
    assert engine.history.turns()[-2].text == "message 24"


@pytest.mark.asyncio
async def test_prompt_includes_prior_turns():
    model = AsyncMock()
    model.generate.side_effect = ["First answer", "Second answer"]
    engine = ConversationTurnEngine(AgentProfile(name="T", system_prompt="S"), language_model=model)

    await engine.on_final_transcript("one")
    await engine.on_final_transcript("two")

    prompt = model.generate.call_args.args[0]
    assert prompt == "S\n\nHuman: one\nAssistant: First answer\nHuman: two\nAssistant:"
