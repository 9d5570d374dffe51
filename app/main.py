import logging
from typing import Any, List

from fastapi import Body, Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from app import crud, export, schemas
from app.config import Settings, get_settings
from app.db import Base, engine, get_db
from app.deps import get_geocoding_resolver, get_grower_api, get_ingest_service
from app.farm_names import update_farm_names
from app.geocoding import GeocodingResolver, geocode_missing_addresses
from app.ingest_service import ContractIngestService
from app.upstream import GrowerApiClient

logger = logging.getLogger(__name__)

app = FastAPI(title="Grower Beds API")


# Create tables at startup
@app.on_event("startup")
def _init_db():
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    Base.metadata.create_all(bind=engine)


@app.get("/farms", response_model=List[schemas.FarmOut])
def list_farms(db: Session = Depends(get_db)):
    return crud.list_farms(db)


@app.get("/farms/{farm_id}", response_model=schemas.FarmOut)
def get_farm(farm_id: int, db: Session = Depends(get_db)):
    obj = crud.get_farm(db, farm_id)
    if not obj:
        raise HTTPException(404, "Farm not found")
    return obj


@app.post("/farms/names")
def rename_farms(grower_list: List[schemas.GrowerListEntry], db: Session = Depends(get_db)):
    return update_farm_names(db, grower_list)


@app.post("/contracts/ingest")
def ingest_contract(
    crop_year: int,
    records: List[Any] = Body(...),
    db: Session = Depends(get_db),
    svc: ContractIngestService = Depends(get_ingest_service),
):
    if not records:
        raise HTTPException(status_code=422, detail="No data to insert")
    result = svc.ingest_batch(records, crop_year, db)
    if not result.success:
        raise HTTPException(status_code=422, detail=result.as_dict())
    return result.as_dict()


@app.post("/contracts/fetch")
def fetch_contracts(
    req: schemas.ContractFetchRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    api: GrowerApiClient = Depends(get_grower_api),
):
    if req.token:
        api = GrowerApiClient.from_settings(settings, token=req.token)
    if not (req.token or settings.grower_api_token):
        raise HTTPException(status_code=400, detail="A grower API token is required")
    svc = ContractIngestService(fetch=api.fetch_contract)
    return svc.run_contracts(req.contract_numbers, req.crop_year, db).as_dict()


@app.post("/geocode")
def geocode(
    db: Session = Depends(get_db),
    resolver: GeocodingResolver = Depends(get_geocoding_resolver),
):
    return geocode_missing_addresses(db, resolver).as_dict()


@app.get("/export/beds")
def export_beds(db: Session = Depends(get_db)):
    collection, report = export.export_all(db)
    return {"collection": collection, "report": report.as_dict()}


@app.get("/export/farms")
def export_beds_by_farm(db: Session = Depends(get_db)):
    collections, report = export.export_by_farm(db)
    return {"collections": collections, "report": report.as_dict()}


@app.get("/export/points")
def export_points(db: Session = Depends(get_db)):
    return export.export_points(db)


@app.post("/export")
def write_exports(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    try:
        return export.write_all_exports(db, settings.output_dir)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Could not write exports: {e}")
