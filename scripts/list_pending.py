"""
List documents pending delivery and whether their PDF is on disk.

Dry run: reads the ERP and the artifact directory, sends nothing and
marks nothing.

Usage:
    python scripts/list_pending.py
    python scripts/list_pending.py --limit 10 --verify
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from connectors.erp_base import DocumentQuery, ERPError
from connectors.sap_b1 import SAPBusinessOneConnector
from core.config import load_config
from core.observability import configure_logging
from core.storage import ArtifactStore, ArtifactUnreadableError


async def list_pending(limit: int, verify: bool) -> int:
    config = load_config()
    if not config.erp.is_configured:
        print("SAP_SERVICE_LAYER_URL / SAP_COMPANY_DB / SAP_USERNAME / SAP_PASSWORD are not all set")
        return 1

    delivery = config.delivery
    store = ArtifactStore(delivery.artifact_dir, delivery.artifact_templates, delivery.max_padding)
    connector = SAPBusinessOneConnector.from_config(config.erp)

    if not await connector.connect():
        print(f"Could not log in to {config.erp.base_url}")
        return 1

    try:
        documents = await connector.list_pending(DocumentQuery(
            from_date=delivery.from_date,
            max_documents=limit,
            page_size=config.erp.page_size,
        ))
    except ERPError as e:
        print(f"ERP query failed: {e}")
        return 1
    finally:
        await connector.disconnect()

    print(f"Pending documents: {len(documents)} (from {delivery.from_date.isoformat()})")
    print(f"Artifact directory: {delivery.artifact_dir}")
    print()

    missing = 0
    for doc in documents:
        artifact = store.find(doc.number)
        if artifact is None:
            missing += 1
            state = "MISSING"
        elif verify:
            try:
                artifact = store.verify(artifact)
                state = f"{artifact.filename} ({artifact.page_count} pages)"
            except ArtifactUnreadableError as e:
                state = f"UNREADABLE: {e}"
        else:
            state = artifact.filename
        print(
            f"  {doc.category.value:<12} {doc.number:>10}  {doc.issue_date}  "
            f"{doc.counterparty_id:<12} {doc.counterparty_name[:30]:<30}  {state}"
        )

    print()
    print(f"With artifact: {len(documents) - missing}, missing: {missing}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="List pending documents (dry run)")
    parser.add_argument("--limit", type=int, default=50, help="Maximum documents to list")
    parser.add_argument("--verify", action="store_true", help="Open each PDF and count its pages")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show connector logs")
    args = parser.parse_args()
    configure_logging("DEBUG" if args.verbose else "WARNING")
    sys.exit(asyncio.run(list_pending(args.limit, args.verify)))


if __name__ == "__main__":
    main()
