"""
Property Microservice

Responsibilities:
- Contract existence check for the publication approval workflow
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, status, Path, Body
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logger import setup_service_logger
from .contract_exists_checker import ContractExistsChecker
from .factory import create_contract_exists_checker

# Initialize configuration
settings = get_settings()
config = settings.contracts

logger = setup_service_logger("property_service")

SERVICE_PORT = 8081


class PropertyMicroservice:
    """Property microservice core class"""

    def __init__(self):
        self.checker: Optional[ContractExistsChecker] = None

    async def initialize(self):
        self.checker = create_contract_exists_checker(config)
        logger.info("Property microservice initialized successfully")

    async def shutdown(self):
        if self.checker:
            await self.checker.repository.close()
        logger.info("Property microservice shutdown completed")


property_microservice = PropertyMicroservice()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    await property_microservice.initialize()
    yield
    await property_microservice.shutdown()


app = FastAPI(
    title="Unicorn Properties Service",
    description="Contract existence check for property publication",
    version="1.0.0",
    lifespan=lifespan
)


def get_contract_exists_checker() -> ContractExistsChecker:
    """Get checker instance"""
    if not property_microservice.checker:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Property service not initialized"
        )
    return property_microservice.checker


@app.get("/health")
async def health_check():
    """Service health check"""
    return {
        "status": "healthy",
        "service": "property_service",
        "port": SERVICE_PORT,
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.post("/api/v1/contract-status/check")
async def check_contract_status(
    event: Dict[str, Any] = Body(...),
    checker: ContractExistsChecker = Depends(get_contract_exists_checker)
):
    """Workflow task: does the property have a contract?"""
    result = await checker.handle(event)
    return JSONResponse(status_code=result["statusCode"], content=json.loads(result["body"]))


@app.get("/api/v1/contract-status/{property_id}")
async def get_contract_status(
    property_id: str = Path(..., description="Property ID"),
    checker: ContractExistsChecker = Depends(get_contract_exists_checker)
):
    """Same check addressed by path"""
    result = await checker.handle({"property_id": property_id})
    return JSONResponse(status_code=result["statusCode"], content=json.loads(result["body"]))


if __name__ == "__main__":
    uvicorn.run(
        "microservices.property_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=settings.debug,
        log_level=settings.logging.log_level.lower()
    )
