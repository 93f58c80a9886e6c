"""
generate_json_schema
====================

This script exports JSON Schema definitions for the domain models of
the ledger.  It uses Pydantic's built-in JSON schema generator to
produce schemas for ``OrderRequest``, ``Order`` and ``AssetBalance``
defined in ``brokerage/src/brokerage/models.py``.  The resulting schema
can be used to generate clients in other languages (e.g., TypeScript)
using code generation tools such as `json-schema-to-typescript`.

Usage
-----

Run this script from the project root and specify an output file:

.. code-block:: bash

    python scripts/generate_json_schema.py --out schemas.json

If no output file is provided, the schema will be printed to stdout.
"""

from __future__ import annotations

import argparse
import json
from typing import Any, Dict, Type

from pydantic import BaseModel

from brokerage.models import AssetBalance, Order, OrderRequest


def collect_models() -> Dict[str, Type[BaseModel]]:
    return {
        "OrderRequest": OrderRequest,
        "Order": Order,
        "AssetBalance": AssetBalance,
    }


def generate_schema(models: Dict[str, Type[BaseModel]]) -> Dict[str, Any]:
    schema: Dict[str, Any] = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "definitions": {},
    }
    for name, model in models.items():
        # Pydantic returns schema with title at top level; we normalize under definitions
        schema["definitions"][name] = model.model_json_schema()
    return schema


def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Generate JSON schemas for domain models.")
    ap.add_argument("--out", help="Output file path. Defaults to stdout if omitted.")
    return ap.parse_args()


def main() -> None:
    args = parse_args()
    schema = generate_schema(collect_models())
    if args.out:
        with open(args.out, "w", encoding="utf-8") as f:
            json.dump(schema, f, indent=2)
        print(f"Schema written to {args.out}")
    else:
        print(json.dumps(schema, indent=2))


if __name__ == "__main__":
    main()
