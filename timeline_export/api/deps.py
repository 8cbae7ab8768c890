from typing import Annotated

from fastapi import Depends, Request

from timeline_export.services.delivery import DeliveryService
from timeline_export.services.export_orchestrator import ExportOrchestrator
from timeline_export.services.storage_service import StorageService


def get_orchestrator(request: Request) -> ExportOrchestrator:
    return request.app.state.orchestrator


def get_delivery(request: Request) -> DeliveryService:
    return request.app.state.delivery


def get_storage(request: Request) -> StorageService:
    return request.app.state.storage


Orchestrator = Annotated[ExportOrchestrator, Depends(get_orchestrator)]
Delivery = Annotated[DeliveryService, Depends(get_delivery)]
Storage = Annotated[StorageService, Depends(get_storage)]
