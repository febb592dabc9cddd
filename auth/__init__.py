"""auth/ -- Account-security core for AccountGuard.

Credentials, password policy, lockout tracking, sessions and the audit trail,
composed by AuthService (auth/service.py).

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
