"""inventory/ -- Machine records guarded by the RackGuard auth gates.

Layer rule: inventory/ imports only stdlib and third-party libraries.
"""
