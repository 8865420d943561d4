"""LangGraph assistant for free-form messages.

When the bot is not waiting for a form field, the user's text goes here.

Architecture:
  A LangGraph StateGraph with three nodes:

    1. **router**     — cheap Haiku call that classifies each message as
                        ``event``, ``menu`` or ``chat``
    2. **extractor**  — pulls event fields out of the message as JSON so the
                        form can start pre-filled
    3. **chatbot**    — plain conversational reply

  Routing:
    router → (event?) → extractor → END
    router → (chat?)  → chatbot   → END
    router → (menu?)  → END

  The graph never touches the draft store.  It only reports an intent and
  parameters; the dispatcher decides what to do with them.

  Memory:
    Conversation state is kept per user via LangGraph's MemorySaver
    checkpoint (thread id = user id).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from aide.config import ANTHROPIC_API_KEY, MODEL_NAME, ROUTER_MODEL_NAME
from aide.errors import CollaboratorFailure
from aide.prompts import get_extraction_prompt, get_system_prompt
from aide.services.metrics import metrics

logger = logging.getLogger(__name__)


# ── Router classification prompt ─────────────────────────────────────

ROUTER_PROMPT = (
    "Classify this message sent to a personal assistant. "
    "Reply with exactly one word: EVENT, MENU or CHAT.\n\n"
    "- EVENT: the user wants to create, schedule or add a calendar event, "
    "meeting, appointment or reminder.\n"
    "- MENU: the user asks for the main menu, the options, or what the bot can do.\n"
    "- CHAT: anything else.\n\n"
    "Message: {message}\n\n"
    "Classification:"
)

INTENTS = {"event": "create_event", "menu": "show_menu"}

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_EVENT_KEYS = ("title", "date", "start", "end", "location", "all_day")


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``intent`` is set by the router; ``params`` by the extractor.  Both are
    overwritten on every turn.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    intent: str
    params: dict[str, Any]


@dataclass
class AssistantReply:
    """What the dispatcher needs from one assistant turn."""

    message: str
    intent: str | None = None
    params: dict[str, Any] = field(default_factory=dict)


# ── LLM builders ────────────────────────────────────────────────────


def _build_router_llm() -> ChatAnthropic:
    """Build a lightweight Haiku LLM for intent classification."""
    return ChatAnthropic(
        model=ROUTER_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=10,
    )


def _build_llm(temperature: float = 0.3) -> ChatAnthropic:
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=temperature,
        max_tokens=1024,
    )


def _last_human_text(messages: list[AnyMessage]) -> str:
    for msg in reversed(messages):
        if isinstance(msg, HumanMessage):
            return msg.content
    return ""


def parse_event_json(raw: str) -> tuple[dict[str, Any], str]:
    """Pull the event fields and acknowledgement out of the extractor output.

    Tolerates prose or code fences around the JSON object.  Returns empty
    params when nothing parseable is found.
    """
    match = _JSON_OBJECT_RE.search(raw or "")
    if not match:
        return {}, ""
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.warning("Extractor returned invalid JSON: %r", raw[:200])
        return {}, ""
    if not isinstance(data, dict):
        return {}, ""

    params = {k: data[k] for k in _EVENT_KEYS if data.get(k) not in (None, "")}
    return params, str(data.get("reply") or "")


# ── Node: router ─────────────────────────────────────────────────────


def _make_router_node():
    """Create the router node.  Writes ``state["intent"]`` only."""
    router_llm = _build_router_llm()

    def router_node(state: AgentState) -> dict:
        message = _last_human_text(state["messages"])
        prompt = ROUTER_PROMPT.format(message=message)
        t0 = time.perf_counter()
        try:
            response = router_llm.invoke([HumanMessage(content=prompt)])
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_success("anthropic", "router_classify", latency_ms=elapsed)

            classification = response.content.strip().upper()
            if "EVENT" in classification:
                intent = "event"
            elif "MENU" in classification:
                intent = "menu"
            else:
                intent = "chat"
            logger.debug(
                "Router (%s) classified as: %s (raw: %r, %.0fms)",
                ROUTER_MODEL_NAME, intent, classification, elapsed,
            )
            return {"intent": intent}

        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "router_classify",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            # A plain reply is the harmless default
            logger.warning("Router failed, defaulting to chat: %s", exc)
            return {"intent": "chat"}

    return router_node


# ── Node: extractor ─────────────────────────────────────────────────


def _make_extractor_node():
    """Create the node that turns an event request into form parameters."""
    llm = _build_llm(temperature=0.0)

    def extractor_node(state: AgentState) -> dict:
        prompt = get_extraction_prompt(_last_human_text(state["messages"]))
        t0 = time.perf_counter()
        try:
            response = llm.invoke([HumanMessage(content=prompt)])
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "event_extract",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            # Still open the form, just without pre-filled values
            logger.warning("Event extraction failed: %s", exc)
            return {"params": {}, "messages": [AIMessage(content="Let's set up that event.")]}

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "event_extract", latency_ms=elapsed)
        params, reply = parse_event_json(response.content)
        logger.debug("Extracted event params %s in %.0fms", sorted(params), elapsed)
        return {
            "params": params,
            "messages": [AIMessage(content=reply or "Let's set up that event.")],
        }

    return extractor_node


# ── Node: chatbot ───────────────────────────────────────────────────


def _make_chatbot_node():
    llm = _build_llm()

    def chatbot_node(state: AgentState) -> dict:
        system = SystemMessage(content=get_system_prompt())
        t0 = time.perf_counter()
        try:
            response = llm.invoke([system] + state["messages"])
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_success("anthropic", "llm_invoke", latency_ms=elapsed)
            return {"messages": [response]}
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "llm_invoke",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise

    return chatbot_node


# ── Conditional edges ────────────────────────────────────────────────


def route_by_intent(state: AgentState) -> str:
    intent = state.get("intent", "chat")
    if intent == "event":
        return "extractor"
    if intent == "menu":
        return END
    return "chatbot"


# ── Graph assembly ───────────────────────────────────────────────────


def create_aide_agent():
    """Build and compile the assistant graph.

    Returns a compiled graph that can be invoked with:
        graph.invoke(
            {"messages": [HumanMessage(content="...")], "params": {}},
            config={"configurable": {"thread_id": "42"}},
        )
    """
    graph = StateGraph(AgentState)

    graph.add_node("router", _make_router_node())
    graph.add_node("extractor", _make_extractor_node())
    graph.add_node("chatbot", _make_chatbot_node())

    graph.set_entry_point("router")
    graph.add_conditional_edges(
        "router",
        route_by_intent,
        {"extractor": "extractor", "chatbot": "chatbot", END: END},
    )
    graph.add_edge("extractor", END)
    graph.add_edge("chatbot", END)

    compiled = graph.compile(checkpointer=MemorySaver())
    logger.debug("Aide agent compiled — router: %s, main: %s", ROUTER_MODEL_NAME, MODEL_NAME)
    return compiled


def reply_from_state(result: dict) -> AssistantReply:
    """Read the dispatcher-facing reply out of a finished graph run."""
    intent = INTENTS.get(result.get("intent", ""))
    messages = result.get("messages", [])
    last = messages[-1] if messages else None
    # On the menu path no node answers, so the last message is the user's own
    message = last.content if isinstance(last, AIMessage) else ""
    params = {}
    if intent == "create_event":
        params = result.get("params") or {}
    return AssistantReply(message=message, intent=intent, params=params)


class Assistant:
    """Async facade over the compiled graph, one conversation thread per user."""

    def __init__(self, graph=None):
        self._graph = graph if graph is not None else create_aide_agent()

    async def respond(self, user_id: int, text: str) -> AssistantReply:
        """Run one turn.

        ``graph.invoke`` blocks on the Anthropic API, so it runs in a worker
        thread to keep the event loop free.

        Raises:
            CollaboratorFailure: the graph could not produce a reply.
        """
        try:
            result = await asyncio.to_thread(
                self._graph.invoke,
                {"messages": [HumanMessage(content=text)], "params": {}},
                config={"configurable": {"thread_id": str(user_id)}},
            )
        except Exception as exc:
            logger.exception("Assistant turn failed for user %s", user_id)
            raise CollaboratorFailure("Assistant is unavailable") from exc
        return reply_from_state(result)
