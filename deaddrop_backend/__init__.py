"""Backend for the deaddrop service.

Route handlers in server.py stay thin; the work lives here:
- mailbox: token-keyed dead-drop deposit / withdraw
- datastore: catalog -> database -> table -> record directory store
- identity, mailer, cipher: login tokens, outbound mail, encrypt/decrypt

Security note:
Bearer tokens are capabilities. A mailbox directory is named by the SHA-256
of its token, so tokens never appear on disk or in logs.
"""
