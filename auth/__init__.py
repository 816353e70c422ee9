"""auth/ -- Authentication and session-security package for CropKeeper.

Credential codec (tokens), cookie policy (cookies), CSRF guard (csrf),
session manager (session), and authorization gates (dependencies).

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
