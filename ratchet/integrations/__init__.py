"""Optional integrations with external infrastructure.

Each subpackage depends on an extra:

- ``ratchet.integrations.mongodb``: ``pip install ratchet[mongodb]``
- ``ratchet.integrations.rabbitmq``: ``pip install ratchet[rabbitmq]``
"""
