"""
Authorization feature module.

Capability table, policy evaluator and the enforcement adapters that put
them in front of every mutating route.
"""
