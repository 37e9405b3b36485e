"""Authentication.

Users sign in with their Google profile and receive a signed JWT.
The same token authenticates REST calls (Authorization: Bearer) and
the real-time gateway handshake (?token=), so no raw client-supplied
user id is ever trusted.
"""
