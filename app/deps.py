# app/deps.py
from fastapi import Depends

from app.config import Settings, get_settings
from app.geocoding import GeocodingResolver
from app.ingest_service import ContractIngestService
from app.upstream import GrowerApiClient


def get_ingest_service() -> ContractIngestService:
    return ContractIngestService()


def get_grower_api(settings: Settings = Depends(get_settings)) -> GrowerApiClient:
    return GrowerApiClient.from_settings(settings)


def get_geocoding_resolver(settings: Settings = Depends(get_settings)) -> GeocodingResolver:
    return GeocodingResolver.from_settings(settings)
