"""
Permission management feature module.

Implements role-based access control with direct per-user GRANT / DENY
overrides. Effective permissions are computed on every check by the resolver.
"""
