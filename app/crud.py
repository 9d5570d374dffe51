from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app import models, schemas

# ---------- upserts by natural key ----------
# None of these commit: the caller owns the transaction. Each returns (obj, created).


def insert_farm(db: Session) -> models.Farm:
    # No farm-matching key exists at ingestion time; names are attached later by contract number.
    obj = models.Farm(name=None)
    db.add(obj)
    db.flush()
    return obj


def _adopt_previous_farm_addresses(db: Session, old_farm_id: Optional[int], new_farm_id: int) -> None:
    if old_farm_id is None or old_farm_id == new_farm_id:
        return
    (
        db.query(models.FarmAddress)
        .filter(models.FarmAddress.farm_id == old_farm_id)
        .update({models.FarmAddress.farm_id: new_farm_id}, synchronize_session="fetch")
    )


def upsert_contract(
    db: Session,
    *,
    api_contract_id: int,
    contract_number: str,
    farm_id: int,
    crop_year: int,
) -> tuple[models.Contract, bool]:
    """Keyed by (api_contract_id, crop_year); conflict updates contract number and farm."""
    obj = (
        db.query(models.Contract)
        .filter_by(api_contract_id=api_contract_id, crop_year=crop_year)
        .one_or_none()
    )
    if obj is None:
        obj = models.Contract(
            api_contract_id=api_contract_id,
            contract_number=contract_number,
            farm_id=farm_id,
            crop_year=crop_year,
        )
        db.add(obj)
        db.flush()
        return obj, True

    # Addresses hang off the farm; carry them over so the address key keeps matching.
    _adopt_previous_farm_addresses(db, obj.farm_id, farm_id)
    obj.contract_number = contract_number
    obj.farm_id = farm_id
    db.flush()
    return obj, False


def upsert_farm_address(
    db: Session,
    farm_id: int,
    address: schemas.ParcelAddress,
) -> tuple[models.FarmAddress, bool]:
    """Keyed by (farm, street, city, state, postal_code); conflict updates street2/country."""
    obj = (
        db.query(models.FarmAddress)
        .filter_by(
            farm_id=farm_id,
            street=address.street,
            city=address.city,
            state=address.state,
            postal_code=address.postal_code,
        )
        .one_or_none()
    )
    if obj is None:
        obj = models.FarmAddress(
            farm_id=farm_id,
            street=address.street,
            street2=address.street2,
            city=address.city,
            state=address.state,
            postal_code=address.postal_code,
            country=address.country,
        )
        db.add(obj)
        db.flush()
        return obj, True

    obj.street2 = address.street2
    obj.country = address.country
    db.flush()
    return obj, False


def upsert_bed_block(db: Session, contract_id: int, name: Optional[str]) -> tuple[models.BedBlock, bool]:
    """Keyed by (contract, name)."""
    obj = db.query(models.BedBlock).filter_by(contract_id=contract_id, name=name).one_or_none()
    if obj is None:
        obj = models.BedBlock(contract_id=contract_id, name=name)
        db.add(obj)
        db.flush()
        return obj, True
    return obj, False


def _apply_bed_fields(
    obj: models.Bed,
    record: schemas.ParcelRecord,
    *,
    contract_id: int,
    bed_block_id: Optional[int],
    farm_address_id: Optional[int],
    updated_at: datetime,
) -> None:
    obj.contract_id = contract_id
    obj.bed_block_id = bed_block_id
    obj.farm_address_id = farm_address_id
    # bed_name is the handler section name; kept in both columns for reference
    obj.bed_name = record.handler_section_name
    obj.handler_section_name = record.handler_section_name
    obj.acres = record.acres
    obj.variety = record.variety
    obj.plant_date = record.plant_date
    obj.fruit_type_export = record.fruit_type.export
    obj.fruit_type_global_gap = record.fruit_type.global_gap
    obj.fruit_type_organic = record.fruit_type.organic
    obj.fruit_type_processed = record.fruit_type.processed
    obj.fruit_type_white = record.fruit_type.white
    obj.updated_at = updated_at


def upsert_bed(
    db: Session,
    record: schemas.ParcelRecord,
    *,
    contract_id: int,
    bed_block_id: Optional[int],
    farm_address_id: Optional[int],
    updated_at: datetime,
) -> tuple[models.Bed, bool]:
    """Keyed by api_bed_history_id; conflict overwrites every mutable field."""
    obj = db.query(models.Bed).filter_by(api_bed_history_id=record.bed_history_id).one_or_none()
    created = obj is None
    if created:
        obj = models.Bed(api_bed_history_id=record.bed_history_id)
        db.add(obj)

    _apply_bed_fields(
        obj,
        record,
        contract_id=contract_id,
        bed_block_id=bed_block_id,
        farm_address_id=farm_address_id,
        updated_at=updated_at,
    )
    db.flush()
    return obj, created


def replace_bed_shapes(db: Session, bed: models.Bed, shapes: list[schemas.ShapeIn]) -> tuple[int, int]:
    """Delete every shape of the bed, then insert the given ones. Returns (deleted, inserted)."""
    deleted = (
        db.query(models.Shape)
        .filter(models.Shape.bed_id == bed.id)
        .delete(synchronize_session="fetch")
    )
    for shape in shapes:
        db.add(models.Shape(bed_id=bed.id, shape_type=shape.type, shape_value=shape.value))
    db.flush()
    db.expire(bed, ["shapes"])
    return deleted, len(shapes)


# ---------- reads ----------

def get_farm(db: Session, farm_id: int) -> Optional[models.Farm]:
    return db.get(models.Farm, farm_id)


def list_farms(db: Session) -> list[models.Farm]:
    return db.query(models.Farm).order_by(models.Farm.id).all()
