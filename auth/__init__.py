"""auth/ -- Identity, sessions, access scoping and password reset for AgentPro.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/ or documents/.
api/ and documents/ import from auth/, not the other way around.
"""
