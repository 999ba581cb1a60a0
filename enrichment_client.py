"""Client for the external enrichment capability with DRY_RUN fallback."""

import asyncio
import random
from typing import Any, Dict, Iterable, Optional

import httpx
from loguru import logger

from errors import ExternalCapabilityFailure
from settings import settings
from utils import stable_digest

# Enrichment type -> capability function name
ENRICHMENT_FUNCTIONS = {
    "attributes": "enrich-odoo-attributes",
    "hs_code": "enrich-hs-code",
    "taxonomy": "ai-taxonomy-categorizer",
    "amazon": "amazon-product-enrichment",
    "description": "enrich-technical-description",
    "pricing": "enrich-pricing",
    "environmental": "enrich-environmental-impact",
    "images": "enrich-product-images",
}


class EnrichmentClient:
    """Invoke one enrichment capability per call, or simulate it in DRY_RUN mode."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dry_run: Optional[bool] = None,
        dry_run_fail_types: Optional[Iterable[str]] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.enrichment_api_key
        self.base_url = (base_url or settings.enrichment_base_url).rstrip("/")
        self.dry_run = settings.dry_run if dry_run is None else dry_run
        if not self.api_key:
            self.dry_run = True
        self.dry_run_fail_types = frozenset(
            settings.dry_run_fail_types if dry_run_fail_types is None else dry_run_fail_types
        )

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.enrichment_timeout_sec),
            headers={
                "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
                "Content-Type": "application/json",
            },
        )

        logger.info(f"Enrichment client initialized: dry_run={self.dry_run}")

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    @staticmethod
    def supports(enrichment_type: str) -> bool:
        return enrichment_type in ENRICHMENT_FUNCTIONS

    async def enrich(
        self, owner_id: str, enrichment_type: str, options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Run one enrichment and return its data payload.

        Raises:
            ExternalCapabilityFailure: unknown type, transport failure or a
                non-success payload.
        """
        options = options or {}
        if not self.supports(enrichment_type):
            raise ExternalCapabilityFailure(f"Unknown enrichment type: {enrichment_type}")

        if self.dry_run:
            return await self._dry_run_enrich(owner_id, enrichment_type, options)

        return await self._call_capability(owner_id, enrichment_type, options)

    async def _dry_run_enrich(
        self, owner_id: str, enrichment_type: str, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Deterministic outcome for DRY_RUN mode.

        Types in ``dry_run_fail_types`` fail on purpose; request options
        cannot change the outcome.
        """
        await asyncio.sleep(0)
        if enrichment_type in self.dry_run_fail_types:
            raise ExternalCapabilityFailure(f"Dry run failure for {enrichment_type}")
        return {
            "section": enrichment_type,
            "digest": stable_digest(owner_id, enrichment_type),
            "dry_run": True,
        }

    async def _call_capability(
        self, owner_id: str, enrichment_type: str, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Call the capability endpoint with retry logic."""
        function_name = ENRICHMENT_FUNCTIONS[enrichment_type]
        url = f"{self.base_url}/{function_name}"
        payload = {"ownerId": owner_id, **options}

        # Retry logic with exponential backoff
        max_retries = 3
        base_delay = 1.0

        for attempt in range(max_retries):
            try:
                response = await self.client.post(url, json=payload)
            except httpx.TimeoutException:
                if attempt == max_retries - 1:
                    raise ExternalCapabilityFailure(f"{function_name} timed out")
                delay = base_delay * (2**attempt) + random.uniform(0, 1)
                logger.warning(
                    f"{function_name} timed out, retrying in {delay:.2f}s (attempt {attempt + 1})"
                )
                await asyncio.sleep(delay)
                continue
            except httpx.HTTPError as e:
                raise ExternalCapabilityFailure(f"{function_name} request failed: {e}") from e

            if response.status_code == 429 or response.status_code >= 500:
                if attempt == max_retries - 1:
                    raise ExternalCapabilityFailure(
                        f"{function_name} error: {response.status_code} - {response.text}"
                    )
                delay = base_delay * (2**attempt) + random.uniform(0, 1)
                logger.warning(
                    f"{function_name} returned {response.status_code}, "
                    f"retrying in {delay:.2f}s (attempt {attempt + 1})"
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code != 200:
                # Client error - don't retry
                raise ExternalCapabilityFailure(
                    f"{function_name} error: {response.status_code} - {response.text}"
                )

            try:
                data = response.json()
            except ValueError as e:
                raise ExternalCapabilityFailure(f"{function_name} returned invalid JSON") from e

            if not data.get("success", True):
                raise ExternalCapabilityFailure(data.get("error") or "Enrichment failed")

            logger.info(f"{function_name} succeeded for owner {owner_id}")
            return data.get("data") or {}

        raise ExternalCapabilityFailure(f"{function_name} failed after all retries")


# Global enrichment client instance
enrichment_client = EnrichmentClient()
