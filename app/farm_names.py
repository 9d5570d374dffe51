from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.orm import Session

from app import models, schemas

logger = logging.getLogger(__name__)


def _name_by_contract(grower_list: Iterable[Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for raw in grower_list:
        entry = raw if isinstance(raw, schemas.GrowerListEntry) else schemas.GrowerListEntry.model_validate(raw)
        if entry.extBpId and entry.bpName:
            out[entry.extBpId] = entry.bpName
    return out


def update_farm_names(db: Session, grower_list: Iterable[Any]) -> dict:
    """Name each contract's farm from the grower list, matched on contract number."""
    names = _name_by_contract(grower_list)
    counts = {"contracts": 0, "updated": 0, "already_correct": 0, "not_found": 0}

    contracts = db.query(models.Contract).order_by(models.Contract.contract_number).all()
    for contract in contracts:
        counts["contracts"] += 1
        name = names.get(contract.contract_number)
        if not name or contract.farm is None:
            counts["not_found"] += 1
            logger.warning("Contract %s: farm name not found in grower list", contract.contract_number)
            continue
        if contract.farm.name == name:
            counts["already_correct"] += 1
            continue
        contract.farm.name = name
        counts["updated"] += 1
        logger.info("Contract %s: farm renamed to %r", contract.contract_number, name)

    db.commit()
    return counts
