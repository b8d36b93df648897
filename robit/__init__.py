"""robit.

This package turns a free-form instruction into a sequence of side-effecting
operations (file edits, shell commands, web and browser calls) performed on
the user's machine, without letting anything risky run before a human has
explicitly approved it.

High-level architecture
-----------------------

- ``robit.agent_core``:

  - Action registry and the built-in action handlers.
  - Policy configuration and the pure preflight evaluator.
  - Approval coordinator for pending human decisions.
  - A LangGraph-based execution engine with suspend/resume on approval.
  - Repository interfaces with in-memory and SQL implementations.
  - The versioned message envelope and the service that maps envelopes to
    engine calls.

- ``robit.adapters``: message sources and sinks (stdin, in-process queue).

- ``robit.core``: process settings and logging setup.

Typical workflow
----------------

1. An adapter delivers an inbound envelope (chat message, plan, decision).
2. ``RobitService`` turns it into a ``Plan`` and calls the engine.
3. Each step passes preflight; risky steps suspend the session and an
   approval request is sent back through the adapter.
4. A decision resumes the session; the final summary is sent as a response.
"""

__version__ = "0.1.0"
