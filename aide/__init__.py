"""Aide — a personal-assistant chat bot that puts events in your calendar.

Architecture Overview
=====================

The core is a **conversational form engine**: a per-user state machine
that walks an event draft through

    collecting → ready → created ↔ editing      (cancel from anywhere)

asking for one field at a time (title, date, start, end, location, with
an all-day switch) and creating the event in Google Calendar on confirm.

Inbound triggers come in two kinds:

1. **Button presses** — callback codes such as ``confirm`` or ``field:date``.
2. **Text replies** — the value of the awaited field, or, when nothing is
   awaited, a free-form message for the LangGraph assistant, which may
   answer, open the menu, or start a pre-filled event draft.

Key Design Decisions
--------------------
- **Persistence**: SQLite via aiosqlite.  Draft writes and "awaited input"
  writes for one transition share one ``BEGIN IMMEDIATE`` transaction, and a
  partial unique index enforces one active draft per user.
- **Concurrency**: the dispatcher serialises triggers per user with an
  ``asyncio.Lock`` held across the calendar call.
- **Calendar**: Google Calendar v3 over httpx with timeouts and
  exponential-backoff retries.
- **Assistant**: Haiku router + Sonnet extractor / chatbot in a LangGraph
  StateGraph with per-user MemorySaver threads.
- **Health**: "good morning" / "good night" and water buttons log sleep and
  hydration; the menu shows last night's sleep and today's water.
- **Google OAuth**: per-user tokens from the consent callback, refreshed on
  demand and handed to the calendar client.
- **Dual Interface**: FastAPI server (production) + CLI loop (development).

Package Structure
-----------------
- ``aide/models.py`` — draft and bot-state models, lifecycle transitions
- ``aide/fields.py`` — field registry and input parsers
- ``aide/engine.py`` — the state machine
- ``aide/dispatcher.py`` — trigger routing and per-user locking
- ``aide/presentation.py`` — card rendering
- ``aide/health.py`` — sleep and water stats
- ``aide/agent.py`` / ``aide/prompts.py`` — free-form assistant
- ``aide/services/`` — SQLite stores, Google Calendar and OAuth clients, metrics
- ``aide/api/`` — FastAPI routes and Pydantic schemas
- ``aide/server.py`` / ``aide/main.py`` — entry points
"""
