"""Locasso — identity backend.

Resolves externally-verified identities (platform proxy headers, identity
tokens, developer-mode input, upstream principals) to internal user records,
creating them on first sign-in and refreshing last-login otherwise.
"""

__version__ = "0.1.0"
