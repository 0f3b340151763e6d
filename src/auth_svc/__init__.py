"""
Auth Service
============

A FastAPI service that obtains database access through HashiCorp Vault.

For every request that needs the database the service:
- Logs in to Vault with AppRole (role_id + secret_id)
- Requests a freshly generated PostgreSQL credential
- Opens a connection with that credential

Brand-new credentials are not always active the instant Vault returns them,
so credential retrieval and connection establishment retry transient
failures with exponential backoff.
"""

__version__ = "0.1.0"
__service_name__ = "auth-svc"
