"""auth/ -- Credentials and request-integrity primitives for RackGuard.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and
session/. It does NOT import from api/, web/, or inventory/.
api/ and web/ import from auth/, not the other way around.
"""
