"""
docbus - Document Store Message Bus

A message-bus façade over a MongoDB document store.
It provides:
- Wire contracts (requests, responses, bus envelope, addresses)
- A database gateway (save / find / aggregate)
- Request dispatching and the data manipulation pipeline
- Periodic pollers that republish newly stored records

Components never derive addresses from type names. Every collaborator
address is passed in explicitly through configuration.
"""

__version__ = "0.1.0"
