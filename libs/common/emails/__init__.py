"""
Notification package.

Modules:
- client: EmailClient and the fire-and-forget ``notify`` helper
"""
