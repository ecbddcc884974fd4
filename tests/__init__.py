"""Test suite for cepform.

This package contains tests for:
- Masked-input transforms (idempotence, digit retention, phone mask switch)
- Validation rule sets (ordering, cross-field rules, purity)
- Form state (copy-on-write snapshots, atomic merge, identity lock)
- Dependent-field resolution (stale response discard, failures)
- Controller and enrollment form (submit flow, error taxonomy, events)
"""
