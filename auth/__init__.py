"""auth/ -- Authentication and authorization core for secure-user-auth.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration arrives through
constructor arguments; api/main.py and main.py do the wiring.
api/ imports from auth/, not the other way around.
"""
