# app/ingest_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from app import crud, schemas
from app.errors import IngestError, UpstreamApiError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Fetch = Callable[[str, int], list]

TABLES = ("farms", "farm_addresses", "contracts", "bed_blocks", "beds", "shapes")


def _empty_stats() -> Dict[str, Dict[str, int]]:
    return {t: {"inserted": 0, "updated": 0, "deleted": 0} for t in TABLES}


@dataclass
class IngestResult:
    success: bool
    stats: Dict[str, Dict[str, int]] = field(default_factory=_empty_stats)
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {"success": self.success, "stats": self.stats, "error": self.error}


@dataclass
class ContractResult:
    contract_number: str
    api: Dict[str, Any] = field(default_factory=lambda: {"success": False})
    db: Dict[str, Any] = field(default_factory=lambda: {"success": False})


@dataclass
class ContractRunSummary:
    crop_year: int
    results: list[ContractResult] = field(default_factory=list)

    def as_dict(self) -> dict:
        api_ok = [r for r in self.results if r.api.get("success")]
        db_ok = [r for r in self.results if r.db.get("success")]
        totals = _empty_stats()
        for r in db_ok:
            for table, counts in r.db["stats"].items():
                for k, v in counts.items():
                    totals[table][k] += v
        return {
            "crop_year": self.crop_year,
            "contracts": len(self.results),
            "api_succeeded": len(api_ok),
            "db_succeeded": len(db_ok),
            "records_fetched": sum(r.api.get("record_count", 0) for r in api_ok),
            "totals": totals,
            "api_failures": [
                {"contract_number": r.contract_number, "status_code": r.api.get("status_code"), "error": r.api.get("error")}
                for r in self.results
                if not r.api.get("success")
            ],
            "db_failures": [
                {"contract_number": r.contract_number, "error": r.db.get("error")}
                for r in self.results
                if r.api.get("success") and not r.db.get("success")
            ],
        }


def read_contract_numbers(content: str) -> list[str]:
    """One contract number per line; blank lines are skipped."""
    return [line.strip() for line in content.splitlines() if line.strip()]


class ContractIngestService:
    def __init__(self, *, clock: Clock | None = None, fetch: Fetch | None = None):
        # DI
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._fetch = fetch

    @staticmethod
    def _parse(raw: Any) -> schemas.ParcelRecord:
        if isinstance(raw, schemas.ParcelRecord):
            return raw
        return schemas.ParcelRecord.model_validate(raw)

    def _write_batch(self, records: list, crop_year: int, db: Session, stats: Dict[str, Dict[str, int]]) -> None:
        first = self._parse(records[0])
        now = self._clock()

        farm = crud.insert_farm(db)
        stats["farms"]["inserted"] += 1

        contract, created = crud.upsert_contract(
            db,
            api_contract_id=first.contract_id,
            contract_number=first.contract_number,
            farm_id=farm.id,
            crop_year=crop_year,
        )
        stats["contracts"]["inserted" if created else "updated"] += 1

        # natural key -> surrogate id, for this batch only
        address_ids: Dict[tuple, int] = {}
        block_ids: Dict[Optional[str], int] = {}

        # input order matters: later records reuse ids cached by earlier ones
        for raw in records:
            record = self._parse(raw)

            key = record.address.key
            if key not in address_ids:
                addr, created = crud.upsert_farm_address(db, farm.id, record.address)
                address_ids[key] = addr.id
                stats["farm_addresses"]["inserted" if created else "updated"] += 1

            if record.block_name not in block_ids:
                block, created = crud.upsert_bed_block(db, contract.id, record.block_name)
                block_ids[record.block_name] = block.id
                stats["bed_blocks"]["inserted" if created else "updated"] += 1

            bed, created = crud.upsert_bed(
                db,
                record,
                contract_id=contract.id,
                bed_block_id=block_ids[record.block_name],
                farm_address_id=address_ids[key],
                updated_at=now,
            )
            stats["beds"]["inserted" if created else "updated"] += 1

            deleted, inserted = crud.replace_bed_shapes(db, bed, record.shapes)
            stats["shapes"]["deleted"] += deleted
            stats["shapes"]["inserted"] += inserted

    def ingest_batch(self, records: Iterable[Any], crop_year: int, db: Session) -> IngestResult:
        """
        Ingest all bed records of one contract in a single transaction.
        Any failure rolls the whole batch back; the returned stats are informational only.
        """
        records = list(records)
        stats = _empty_stats()
        try:
            if not records:
                raise IngestError("No data to insert")
            self._write_batch(records, crop_year, db, stats)
            db.commit()
        except ValueError as e:
            # malformed records (pydantic ValidationError) and empty batches
            db.rollback()
            logger.error("Ingestion rolled back for crop year %s: %s", crop_year, e)
            return IngestResult(success=False, stats=stats, error=str(e))
        except Exception as e:
            # constraint violations, lost connections: the store's rollback keeps the batch atomic
            db.rollback()
            logger.exception("Ingestion rolled back for crop year %s", crop_year)
            return IngestResult(success=False, stats=stats, error=str(e))
        return IngestResult(success=True, stats=stats)

    def run_contracts(self, contract_numbers: Iterable[str], crop_year: int, db: Session) -> ContractRunSummary:
        """Fetch and ingest each contract in turn; failures are collected, never raised."""
        if self._fetch is None:
            raise RuntimeError("ContractIngestService was built without a fetcher")

        summary = ContractRunSummary(crop_year=crop_year)
        for contract_number in contract_numbers:
            result = ContractResult(contract_number=contract_number)
            summary.results.append(result)

            try:
                records = self._fetch(contract_number, crop_year)
            except UpstreamApiError as e:
                result.api = {"success": False, "status_code": e.status_code, "error": e.message}
                logger.error("API failed for %s: HTTP %s %s", contract_number, e.status_code, e.message)
                continue

            result.api = {"success": True, "record_count": len(records)}
            logger.info("Fetched %d bed record(s) for contract %s", len(records), contract_number)

            ingest = self.ingest_batch(records, crop_year, db)
            result.db = ingest.as_dict()
            if ingest.success:
                logger.info("Ingested contract %s", contract_number)
            else:
                logger.error("DB failed for %s: %s", contract_number, ingest.error)

        return summary
