"""
ImgBed Backend — Route Dependencies
=====================================

Services are built once in create_app() and kept on `app.state`, so each
app instance (including test apps) has its own storage root and settings.
These helpers hand them to route handlers through FastAPI's Depends().
"""

from fastapi import Request

from imgbed.config import Settings
from imgbed.services.file_service import FileService
from imgbed.services.ledger import ImageLedger
from imgbed.services.retrieval_service import RetrievalService
from imgbed.services.upload_service import UploadService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> FileService:
    return request.app.state.storage


def get_ledger(request: Request) -> ImageLedger:
    return request.app.state.ledger


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


def get_retrieval_service(request: Request) -> RetrievalService:
    return request.app.state.retrieval_service
