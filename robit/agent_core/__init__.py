"""Execution core: actions, policy, approvals, runtime and persistence.

Design overview
---------------

A ``Plan`` is an ordered list of ``PlanStep`` items, each naming a registered
action and its parameters. The engine runs the steps of one session strictly
in order:

- the action is resolved in the ``ActionRegistry``; unknown names fail the
  step without running anything,
- ``policy.preflight.evaluate`` decides whether the step may run and whether
  a human must approve it first,
- steps that need approval suspend the session; the pending request lives in
  the ``ApprovalCoordinator`` and the session is persisted as
  ``awaiting_approval``,
- approved steps are handed to the action handler, and each step yields
  exactly one ``ExecutionOutcome``.

Sessions for different rooms run concurrently; the policy and the registry
are shared read-only.

Typical usage
-------------

Most applications should use ``agent_core.service.RobitService`` (built by
``agent_core.factory.build_service``) and feed it envelopes from an adapter.
"""
