"""
Email package.

Modules:
- client: EmailClient for sending emails via the Communications Service API

Templates live in the Communications Service; callers send a template kind
plus data and never render email bodies themselves.
"""
