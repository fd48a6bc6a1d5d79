"""
Authentication for the portal API.

Design goals:
- Opaque bearer tokens (Authorization header), one row per issued token.
- Tokens are stored hashed; plaintext is returned exactly once at issuance.
- Credential failures never reveal which half of the pair was wrong.
"""
