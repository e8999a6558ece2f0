"""
Contract Service

Contracts bounded context of the unicorn real-estate platform:
- Contract lifecycle (create as DRAFT, approve) through condition-guarded writes
- Change capture from the contract change log
- ContractStatusChanged events on the shared bus

Port: 8080
"""

__version__ = "1.0.0"
__service__ = "contract_service"
