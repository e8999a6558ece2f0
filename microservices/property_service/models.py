"""
Property Service Data Models
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class ContractStatus(BaseModel):
    """Contract status of a property as seen by the existence check"""
    property_id: str
    contract_id: str
    contract_status: Optional[str] = None


class ContractStatusCheckInput(BaseModel):
    """Workflow task input"""
    model_config = ConfigDict(populate_by_name=True)

    property_id: str = Field(..., min_length=1)
    task_token: Optional[str] = Field(None, alias="TaskToken")


class CheckResult(BaseModel):
    """Workflow task result: a status code and a JSON body"""
    statusCode: int
    body: str
