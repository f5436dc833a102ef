"""
Conformance Test Suite

Behavior every deployment of the collateral bank must keep, organized by
invariant:
1. test_engine_conservation.py - Double entry, escrow backing, formula bounds
2. test_engine_atomicity.py - All-or-nothing operations, collaborator failures included
3. test_engine_idempotency.py - Duplicate and stale transaction handling
4. test_engine_temporal.py - clone_at, replay and loan timestamps
5. test_engine_serialization.py - Concurrent callers queue on the bank lock

Conservation properties use hypothesis.
"""
