from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import httpx

from app.config import Settings
from app.errors import UpstreamApiError

logger = logging.getLogger(__name__)


class GrowerApiClient:
    """Client for GET {base}/bog/{contract_number}: one record per bed of the contract."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        *,
        timeout: float = 30.0,
        data_dir: Optional[Path] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._data_dir = data_dir
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, *, token: Optional[str] = None, **kwargs) -> "GrowerApiClient":
        return cls(
            settings.grower_api_url,
            token or settings.grower_api_token,
            timeout=settings.grower_api_timeout,
            data_dir=settings.data_dir,
            **kwargs,
        )

    def _save_raw(self, contract_number: str, crop_year: int, payload) -> None:
        if self._data_dir is None:
            return
        year_dir = Path(self._data_dir) / str(crop_year)
        year_dir.mkdir(parents=True, exist_ok=True)
        (year_dir / f"{contract_number}.json").write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def fetch_contract(self, contract_number: str, crop_year: int) -> list:
        url = f"{self._base_url}/bog/{contract_number}"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.get(
                    url,
                    params={"token": self._token, "cropYear": crop_year},
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            raise UpstreamApiError(str(e)) from e

        if resp.is_error:
            try:
                message = resp.json().get("message") or resp.reason_phrase
            except (ValueError, AttributeError):
                message = resp.reason_phrase
            raise UpstreamApiError(message, status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamApiError(f"Invalid JSON body: {e}", status_code=resp.status_code) from e

        self._save_raw(contract_number, crop_year, payload)
        return payload if isinstance(payload, list) else [payload]

    __call__ = fetch_contract
