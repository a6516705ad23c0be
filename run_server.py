#!/usr/bin/env python3
"""inkwell contract lifecycle server.

Configuration comes from env vars:
  INKWELL_DB          SQLite path (default /var/lib/inkwell/inkwell.db)
  INKWELL_HOST        bind address (default 0.0.0.0)
  INKWELL_PORT        port (default 8000)
  INKWELL_LOG_LEVEL   logging level (default INFO)
  INKWELL_EDIT_POLICY "default" or "freeze_after_brand_signature"
"""

import os, sys, logging
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import uvicorn
from lifecycle import FlagPolicy, FreezeAfterBrandSignaturePolicy
from server.app import create_app
from server.store import ContractStore

DB_PATH = os.environ.get("INKWELL_DB", "/var/lib/inkwell/inkwell.db")
HOST = os.environ.get("INKWELL_HOST", "0.0.0.0")
PORT = int(os.environ.get("INKWELL_PORT", "8000"))
LOG_LEVEL = os.environ.get("INKWELL_LOG_LEVEL", "INFO").upper()
EDIT_POLICY = os.environ.get("INKWELL_EDIT_POLICY", "default")

POLICIES = {
    "default": FlagPolicy,
    "freeze_after_brand_signature": FreezeAfterBrandSignaturePolicy,
}


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if EDIT_POLICY not in POLICIES:
        print(f"Unknown INKWELL_EDIT_POLICY '{EDIT_POLICY}' (expected one of: {', '.join(POLICIES)})",
              file=sys.stderr)
        sys.exit(1)

    db_dir = os.path.dirname(DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    store = ContractStore(DB_PATH)
    app = create_app(store=store, policy=POLICIES[EDIT_POLICY]())

    print(f"inkwell: db={DB_PATH} policy={EDIT_POLICY} listening on {HOST}:{PORT}", file=sys.stderr)
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
