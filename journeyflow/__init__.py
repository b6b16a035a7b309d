"""journeyflow — run author-designed conversation graphs as live LLM chats.

Architecture Overview
=====================

An author draws a directed graph of **nodes** (agent personas, data-collection
forms and report generators) connected by **edges** whose conditions are
written in natural language.  A visitor then walks that graph as a live
conversation:

1. **Agent nodes** chat through the LLM.  Each visitor turn runs a small
   LangGraph ``StateGraph``: evaluate the transition, reply, evaluate again.
2. **Form nodes** collect answers into runtime variables, then move on
   automatically (one edge) or let the visitor pick (several edges).
3. **Report nodes** summarise the whole conversation and persist it as a
   *journey* once the visitor leaves an email.

Key Design Decisions
--------------------
- **LLM**: Claude via ``langchain-anthropic``.  Every call asks for one JSON
  object; the reply is located with a first-``{``/last-``}`` scan so chatty
  preambles are tolerated.
- **Failure isolation**: a turn runs on a copy of the history and is only
  committed when every oracle call succeeded, so a failed turn can simply be
  retried.  The report summary is the one call that degrades to a canned
  fallback instead of failing.
- **Storage**: SQLAlchemy models for projects, versioned graphs, variables,
  public links and journeys.  Publishing is a single transaction.
- **Dual Interface**: FastAPI server (production) + CLI runner (development).

Package Structure
-----------------
- ``journeyflow/workflow.py`` — node/edge graph model
- ``journeyflow/resolvers.py`` — ``@variable`` template substitution
- ``journeyflow/turn_graph.py`` — LangGraph per-turn decision loop
- ``journeyflow/session.py`` — conversation session state machine
- ``journeyflow/services/`` — oracle client, session registry, authoring,
  public access, CSV export, metrics
- ``journeyflow/db/`` — SQLAlchemy models and repositories
- ``journeyflow/api/`` — FastAPI routes and Pydantic schemas
- ``journeyflow/server.py`` — FastAPI application
- ``journeyflow/main.py`` — CLI runner
"""
