"""session/ -- Server-side session state for RackGuard.

Layer rule: session/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/, auth/, or inventory/. auth/csrf.py is
layered on top of session/, not the other way around.
"""
