"""
Property Service

Properties bounded context, contract side:
- Contract existence check polled by the publication approval workflow

Port: 8081
"""

__version__ = "1.0.0"
__service__ = "property_service"
