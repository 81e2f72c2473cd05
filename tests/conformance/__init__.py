"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending market.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Every asset sums to zero across wallets
2. atomicity.py - All-or-nothing operation semantics
3. idempotency.py - Interest is charged once per interval
4. determinism.py - Reproducible behavior
5. exchange_rate.py - Share value never decreases
6. liquidation_improvement.py - Liquidations improve health or close the position
7. temporal.py - Time and operation ordering

scenarios.py generates random market activity for the property tests.
These tests use hypothesis for property-based testing.
"""
