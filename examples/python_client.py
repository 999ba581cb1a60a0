#!/usr/bin/env python3
"""
Python client example for the Enrichment Queue API.
This script demonstrates how to enrich a product and watch queue health.
"""

import os
import sys
from typing import Any, Dict, List, Optional

import requests


class EnrichmentQueueClient:
    """Simple client for the Enrichment Queue API."""

    def __init__(self, base_url: str = "http://localhost:8080", token: Optional[str] = None):
        self.base_url = base_url
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def health_check(self) -> Dict[str, Any]:
        """Check service liveness."""
        response = self.session.get(f"{self.base_url}/healthz")
        response.raise_for_status()
        return response.json()

    def system_health(self) -> Dict[str, Any]:
        """Get the full health report."""
        response = self.session.get(f"{self.base_url}/health")
        response.raise_for_status()
        return response.json()

    def queue_metrics(self) -> Dict[str, Any]:
        response = self.session.get(f"{self.base_url}/queue/metrics")
        response.raise_for_status()
        return response.json()

    def enrich(
        self, owner_id: str, enrichment_types: List[str], **options
    ) -> Dict[str, Any]:
        """Run a batch of enrichments for one product."""
        payload = {
            "ownerId": owner_id,
            "enrichmentTypes": enrichment_types,
            "options": options,
        }
        response = self.session.post(f"{self.base_url}/enrich", json=payload)
        response.raise_for_status()
        return response.json()

    def owner_jobs(self, owner_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status} if status else None
        response = self.session.get(f"{self.base_url}/owners/{owner_id}/jobs", params=params)
        response.raise_for_status()
        return response.json()

    def recent_alerts(self, limit: int = 10) -> List[Dict[str, Any]]:
        response = self.session.get(f"{self.base_url}/alerts", params={"limit": limit})
        response.raise_for_status()
        return response.json()


def main():
    """Main function demonstrating the client usage."""
    print("Enrichment Queue Client Demo")
    print("=" * 40)

    token = os.environ.get("ENRICHMENT_TOKEN")
    if not token:
        print("Set ENRICHMENT_TOKEN to a valid session token")
        sys.exit(1)

    client = EnrichmentQueueClient(token=token)
    owner_id = sys.argv[1] if len(sys.argv) > 1 else "demo-product"

    try:
        print("1. Checking service health...")
        health = client.health_check()
        if not health.get("ok"):
            print("Service is unhealthy")
            return
        print("Service is healthy\n")

        print(f"2. Enriching {owner_id}...")
        result = client.enrich(owner_id, ["attributes", "hs_code", "taxonomy"])
        print(f"{result['successCount']}/{result['totalCount']} enrichments succeeded")
        for enrichment_type, outcome in result["perType"].items():
            line = f"  {enrichment_type:<14} {outcome['status']}"
            if outcome.get("error"):
                line += f" ({outcome['error']})"
            print(line)
        print()

        print("3. Failed jobs for this product:")
        for job in client.owner_jobs(owner_id, status="failed"):
            print(f"  {job['id']} {job['enrichment_type']}: {job['error_message']}")
        print()

        print("4. Queue metrics:")
        metrics = client.queue_metrics()
        for key in ("pending", "processing", "completed_24h", "failed_24h", "stuck"):
            print(f"  {key:<14} {metrics[key]}")
        print()

        print("5. System health:")
        report = client.system_health()
        print(f"  status: {report['status']}")
        for recommendation in report["recommendations"]:
            print(f"  - {recommendation}")
        print()

        print("6. Recent alerts:")
        for alert in client.recent_alerts(5):
            print(f"  [{alert['severity']}] {alert['title']}: {alert['message']}")

    except requests.exceptions.RequestException as e:
        print(f"Request failed: {e}")
        if hasattr(e, "response") and e.response is not None:
            print(f"Response: {e.response.text}")


if __name__ == "__main__":
    main()
