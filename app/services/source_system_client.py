"""Client for the main application's invoice data, queried through Metabase."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import SourceSystemSettings
from app.core.exceptions import APIClientError, ConfigurationError
from app.schemas.ingestion import DocumentReference
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

BASE_SELECT = """
  SELECT r.id, r.invoicepdfurl, r.shopid, r.vehicleid, r.fleetid, r.createdat, r.status,
         s.name AS shop_name,
         v.vin, v.make, v.model, v.year AS vehicle_year,
         f.name AS fleet_name
  FROM `{dataset}.requests` r
  LEFT JOIN `{dataset}.shops` s ON r.shopid = s.id
  LEFT JOIN `{dataset}.vehicles` v ON r.vehicleid = v.id
  LEFT JOIN `{dataset}.fleets` f ON r.fleetid = f.id
"""


def row_to_reference(row: Dict[str, Any]) -> DocumentReference:
    """Map a source ``requests`` row onto a document reference."""
    return DocumentReference(
        request_id=row["id"],
        pdf_url=row["invoicepdfurl"],
        shop_id=row.get("shopid"),
        vehicle_id=row.get("vehicleid"),
        fleet_id=row.get("fleetid"),
        shop_name=row.get("shop_name"),
        vin=row.get("vin"),
        make=row.get("make"),
        model=row.get("model"),
        year=row.get("vehicle_year"),
        created_at=row.get("createdat"),
    )


class SourceSystemClient:
    """Runs native SQL against the source warehouse via the Metabase dataset API."""

    def __init__(
        self,
        settings: SourceSystemSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.transport = transport

    async def query(self, sql: str) -> List[Dict[str, Any]]:
        """Execute ``sql`` and return rows keyed by column name.

        Raises:
            ConfigurationError: If Metabase is not configured
            APIClientError: If the query fails
        """
        if not self.settings.url or not self.settings.api_key:
            raise ConfigurationError("METABASE_URL and METABASE_API_KEY must be set to query invoice data")

        payload = {
            "database": self.settings.database_id,
            "type": "native",
            "native": {"query": sql},
        }
        LOGGER.debug(
            "Executing Metabase query",
            extra={"database_id": self.settings.database_id, "sql_preview": sql.strip()[:100]},
        )

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.settings.url.rstrip('/')}/api/dataset",
                    json=payload,
                    headers={"x-api-key": self.settings.api_key},
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            raise APIClientError(
                f"Metabase query failed with HTTP {e.response.status_code}: {e.response.text[:500]}",
                original_error=e,
            )
        except httpx.HTTPError as e:
            raise APIClientError(f"Metabase query failed: {e}", original_error=e)

        if body.get("error"):
            raise APIClientError(f"Metabase query error: {body['error']}")

        data = body.get("data") or {}
        columns = [col["name"] for col in data.get("cols", [])]
        return [dict(zip(columns, row)) for row in data.get("rows", [])]

    async def get_new_invoices_since(self, since: datetime) -> List[DocumentReference]:
        """Requests with an invoice PDF created after ``since``, oldest first."""
        since_str = since.astimezone(timezone.utc).isoformat()
        rows = await self.query(
            f"""{self._base_select()}
  WHERE r.invoicepdfurl IS NOT NULL
    AND r._sdc_deleted_at IS NULL
    AND r.createdat > '{since_str}'
  ORDER BY r.createdat ASC
"""
        )
        return self._to_references(rows)

    async def get_all_invoices(self) -> List[DocumentReference]:
        """Every request with an invoice PDF, oldest first."""
        rows = await self.query(
            f"""{self._base_select()}
  WHERE r.invoicepdfurl IS NOT NULL
    AND r._sdc_deleted_at IS NULL
  ORDER BY r.createdat ASC
"""
        )
        return self._to_references(rows)

    def _base_select(self) -> str:
        return BASE_SELECT.format(dataset=self.settings.dataset)

    @staticmethod
    def _to_references(rows: List[Dict[str, Any]]) -> List[DocumentReference]:
        references = [row_to_reference(row) for row in rows if row.get("invoicepdfurl")]
        LOGGER.info("Fetched invoices from source system", extra={"rows": len(rows), "references": len(references)})
        return references
