"""GeoJSON export of beds (polygons) and geocoded farm addresses (points)."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app import models
from app.geometry import decode_polygon
from app.utils import sanitize_filename, to_float

logger = logging.getLogger(__name__)

CRS84 = {"type": "name", "properties": {"name": "urn:ogc:def:crs:OGC:1.3:CRS84"}}

ALL_BEDS_NAME = "Grower Bed Polygons - All Farms"
POINTS_NAME = "Grower Farms"
UNKNOWN_FARM = "Unknown Farm"

FRUIT_TYPE_LABELS = (
    ("fruit_type_export", "Export"),
    ("fruit_type_global_gap", "Global GAP"),
    ("fruit_type_organic", "Organic"),
    ("fruit_type_processed", "Processed"),
    ("fruit_type_white", "White"),
)


@dataclass
class ExportReport:
    valid: int = 0
    skipped: int = 0
    farm_ids: set = field(default_factory=set)
    bed_ids: set = field(default_factory=set)
    total_acres: float = 0.0

    def as_dict(self) -> dict:
        return {
            "valid": self.valid,
            "skipped": self.skipped,
            "farms": len(self.farm_ids),
            "beds": len(self.bed_ids),
            "total_acres": round(self.total_acres, 2),
        }


def feature_collection(name: str, features: list[dict]) -> dict:
    return {"type": "FeatureCollection", "name": name, "crs": CRS84, "features": features}


def _bed_rows(db: Session, farm_id: Optional[int] = None):
    q = (
        db.query(
            models.Bed,
            models.BedBlock.name.label("bed_block_name"),
            models.Contract.contract_number,
            models.Contract.crop_year,
            models.Farm.id.label("farm_id"),
            models.Farm.name.label("farm_name"),
            models.Shape.shape_type,
            models.Shape.shape_value,
        )
        .join(models.Contract, models.Bed.contract_id == models.Contract.id)
        .outerjoin(models.BedBlock, models.Bed.bed_block_id == models.BedBlock.id)
        .outerjoin(models.Farm, models.Contract.farm_id == models.Farm.id)
        .join(models.Shape, models.Shape.bed_id == models.Bed.id)
        .filter(models.Shape.shape_value.isnot(None))
    )
    if farm_id is not None:
        q = q.filter(models.Farm.id == farm_id)
    return q.order_by(
        models.Farm.name, models.Contract.contract_number, models.Bed.bed_name, models.Shape.id
    ).all()


def fruit_type_labels(bed: models.Bed) -> str:
    return ", ".join(label for attr, label in FRUIT_TYPE_LABELS if getattr(bed, attr))


def bed_feature(row) -> Optional[dict]:
    """Map one (bed, shape) row to a Polygon feature; None when the shape does not decode."""
    coordinates = decode_polygon(row.shape_value)
    if coordinates is None:
        return None

    bed: models.Bed = row.Bed
    return {
        "type": "Feature",
        "properties": {
            "bed_id": bed.id,
            "bed_name": bed.bed_name,
            "handler_section_name": bed.handler_section_name,
            "acres": to_float(bed.acres) or 0.0,
            "variety": bed.variety,
            "plant_date": bed.plant_date.isoformat() if bed.plant_date else None,
            "bed_block_name": row.bed_block_name,
            "farm_id": row.farm_id,
            "farm_name": row.farm_name or UNKNOWN_FARM,
            "contract_number": row.contract_number,
            "crop_year": row.crop_year,
            "fruit_types": fruit_type_labels(bed),
            "is_organic": bool(bed.fruit_type_organic),
            "is_export": bool(bed.fruit_type_export),
        },
        "geometry": {"type": "Polygon", "coordinates": coordinates},
    }


def _features_from_rows(rows, report: ExportReport) -> list[dict]:
    features = []
    for row in rows:
        feat = bed_feature(row)
        if feat is None:
            report.skipped += 1
            continue
        features.append(feat)
        report.valid += 1
        report.farm_ids.add(row.farm_id)
        report.bed_ids.add(row.Bed.id)
        report.total_acres += feat["properties"]["acres"]
    return features


def export_all(db: Session) -> tuple[dict, ExportReport]:
    """Every shaped bed of every farm in one collection."""
    report = ExportReport()
    features = _features_from_rows(_bed_rows(db), report)
    if report.skipped:
        logger.warning("Skipped %d undecodable bed shape(s)", report.skipped)
    return feature_collection(ALL_BEDS_NAME, features), report


def _farms_with_shapes(db: Session) -> list[tuple[int, Optional[str]]]:
    return (
        db.query(models.Farm.id, models.Farm.name)
        .join(models.Contract, models.Contract.farm_id == models.Farm.id)
        .join(models.Bed, models.Bed.contract_id == models.Contract.id)
        .join(models.Shape, models.Shape.bed_id == models.Bed.id)
        .filter(models.Shape.shape_value.isnot(None))
        .distinct()
        .order_by(models.Farm.name, models.Farm.id)
        .all()
    )


def export_by_farm(db: Session) -> tuple[dict[str, dict], ExportReport]:
    """
    One collection per farm with at least one shaped bed, keyed by file name.
    Farms sharing a sanitized name get a numeric suffix instead of overwriting each other.
    """
    report = ExportReport()
    out: dict[str, dict] = {}
    for farm_id, farm_name in _farms_with_shapes(db):
        display = farm_name or UNKNOWN_FARM
        stem = sanitize_filename(display) or "Unknown_Farm"
        filename = f"{stem}.geojson"
        n = 2
        while filename in out:
            filename = f"{stem}_{n}.geojson"
            n += 1
        features = _features_from_rows(_bed_rows(db, farm_id=farm_id), report)
        out[filename] = feature_collection(f"{display} - Bed Polygons", features)
    if report.skipped:
        logger.warning("Skipped %d undecodable bed shape(s)", report.skipped)
    return out, report


def _full_address(addr: models.FarmAddress) -> str:
    parts = [addr.street, addr.street2, addr.city, addr.state, addr.postal_code, addr.country]
    return ", ".join(p for p in parts if p)


def export_points(db: Session) -> dict:
    """One Point per geocoded address, with the farm's contracts and total bed acreage."""
    contract_numbers: dict[int, set] = defaultdict(set)
    for farm_id, number in db.query(models.Contract.farm_id, models.Contract.contract_number):
        if farm_id is not None:
            contract_numbers[farm_id].add(number)

    acres_by_farm = dict(
        db.query(models.Contract.farm_id, func.coalesce(func.sum(models.Bed.acres), 0.0))
        .join(models.Bed, models.Bed.contract_id == models.Contract.id)
        .group_by(models.Contract.farm_id)
        .all()
    )

    rows = (
        db.query(models.FarmAddress, models.Farm.name)
        .join(models.Farm, models.FarmAddress.farm_id == models.Farm.id)
        .filter(models.FarmAddress.latitude.isnot(None), models.FarmAddress.longitude.isnot(None))
        .all()
    )

    features: list[dict[str, Any]] = []
    for addr, farm_name in rows:
        total_acres = round(float(acres_by_farm.get(addr.farm_id) or 0.0), 2)
        features.append(
            {
                "type": "Feature",
                "properties": {
                    "farm_id": addr.farm_id,
                    "farm_name": farm_name or UNKNOWN_FARM,
                    "contract_numbers": ", ".join(sorted(contract_numbers.get(addr.farm_id, ()))),
                    "total_acres": total_acres,
                    "address": _full_address(addr),
                    "city": addr.city,
                    "state": addr.state,
                    "postal_code": addr.postal_code,
                },
                "geometry": {"type": "Point", "coordinates": [float(addr.longitude), float(addr.latitude)]},
            }
        )

    features.sort(key=lambda f: (-f["properties"]["total_acres"], f["properties"]["farm_name"]))
    return feature_collection(POINTS_NAME, features)


def write_feature_collection(path: Path, collection: dict) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(collection, indent=2), encoding="utf-8")
    return path


def write_all_exports(db: Session, output_dir: Path) -> dict:
    """Write the three export modes under output_dir; returns paths and reports."""
    output_dir = Path(output_dir)
    beds, beds_report = export_all(db)
    by_farm, farms_report = export_by_farm(db)
    points = export_points(db)

    paths = [str(write_feature_collection(output_dir / "beds_all_farms.geojson", beds))]
    for filename, fc in by_farm.items():
        paths.append(str(write_feature_collection(output_dir / "farms" / filename, fc)))
    paths.append(str(write_feature_collection(output_dir / "farms.geojson", points)))

    return {
        "files": paths,
        "beds": beds_report.as_dict(),
        "by_farm": farms_report.as_dict(),
        "points": len(points["features"]),
    }
