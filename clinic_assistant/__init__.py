"""Clinic Booking Assistant: a chat assistant that books clinic appointments.

Architecture Overview
=====================

The assistant is a **slot-filling state machine** rather than a free-form
agent.  Each chat turn runs through one engine call:

1. **extract**: an extractor pulls field values (name, email, phone, doctor,
   service, date, time) out of the message.  Either deterministic regex rules
   or a Claude completion returning JSON.
2. **validate and merge**: each value is checked against its field rule;
   valid values are merged into the session (last write wins), invalid ones
   are reported back and asked for again.
3. **confirm**: once nothing is missing, the assistant reads the details
   back and waits for yes/no.  "yes" stores the appointment and ends the
   session; "no" discards it.

Key Design Decisions
--------------------
- **Sessions**: in-memory store with per-key locks and an idle sweeper
  (15 minutes by default).  The ``SessionStore`` interface allows a shared
  store to be swapped in.
- **Persistence**: DynamoDB via boto3 (appointments plus a conversation log
  with a 30-day TTL); an in-memory backend for local dev and tests.
- **LLM**: Claude via ``langchain-anthropic``, every call raced against a
  wall-clock timeout.  Extraction failures degrade to a clarification prompt.
- **Retrieval** (optional): OpenAI embeddings in Qdrant supply clinic facts
  and earlier messages as extra context for the extraction prompt.
- **Triple Interface**: FastAPI server, AWS Lambda handlers, CLI chat loop.

Package Structure
-----------------
- ``clinic_assistant/engine.py``: the booking state machine
- ``clinic_assistant/extraction.py``: rule-based and delegated extractors
- ``clinic_assistant/sessions.py``: session store and idle sweeper
- ``clinic_assistant/fields.py`` / ``validation.py``: field sets and rules
- ``clinic_assistant/prompts.py``: prompt templates and canned replies
- ``clinic_assistant/assistant.py``: wiring from configuration
- ``clinic_assistant/config.py``: environment / SSM configuration
- ``clinic_assistant/server.py`` / ``api/``: FastAPI application
- ``clinic_assistant/handlers.py``: Lambda entry points
- ``clinic_assistant/main.py``: CLI chat interface
- ``clinic_assistant/services/``: completion, persistence, retrieval,
  rate limiting, metrics
"""
