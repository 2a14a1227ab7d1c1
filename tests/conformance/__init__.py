"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the trading ledger.
Every Record Store implementation MUST pass these tests.

The tests are organized by invariant:
1. test_conservation.py - Value moves only by the legs of committed trades
2. test_atomicity.py - All-or-nothing trades and provisioning
3. test_idempotency.py - Favorites add/remove may be repeated safely
4. test_concurrency.py - Concurrent trades of one user never lose updates
5. test_replay.py - The transaction log reconstructs balances exactly

These tests use hypothesis for property-based testing.
"""
