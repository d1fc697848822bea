"""Identity evidence handling.

Learn: This package never verifies signatures or issues sessions — the
platform proxy or token issuer has already authenticated the caller.
It only normalizes what they tell us:

1. claims  → extract an IdentityClaims tuple from headers/token/dev params/principal
2. masking → keep identity values out of logs and diagnostics
"""
