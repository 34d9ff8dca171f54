#!/usr/bin/env python3
"""
Pay-per-message demo against a running LnGPT server.

Usage:
    python3 scripts/demo_payment.py [BASE_URL]

Lifecycle:
  1. Check pricing (GET /api/pricing)
  2. Request an invoice for a message (POST /api/invoice)
  3. Pay the printed invoice from any Lightning wallet
  4. Poll verification until paid (POST /api/invoice/verify)
  5. Verify again to show the invoice cannot be reused
"""

import json
import os
import sys
import time

import requests

BASE_URL = sys.argv[1] if len(sys.argv) > 1 else os.getenv("BASE_URL", "http://localhost:8000")
HEADERS = {"Content-Type": "application/json"}
POLL_INTERVAL = 3
POLL_TIMEOUT = 300


def api(method, path, body=None):
    url = f"{BASE_URL}{path}"
    r = requests.request(method, url, headers=HEADERS, json=body, timeout=30)
    data = r.json()
    print(f"  {method} {path} → {r.status_code}")
    print(f"  {json.dumps(data, indent=2)[:500]}")
    return r.status_code, data


def main():
    print("=== PAY-PER-MESSAGE DEMO ===\n")

    # 1. Pricing
    print("[1] Checking pricing...")
    status, prices = api("GET", "/api/pricing")
    assert status == 200, f"Expected 200, got {status}"
    print(f"    Default price: {prices['price_per_message_sats']} sats\n")

    # 2. Invoice
    print("[2] Requesting invoice...")
    status, created = api("POST", "/api/invoice", {
        "conversation_id": f"demo-{int(time.time())}",
        "message": "What is the Lightning Network?",
        "model": os.getenv("MODEL", "gpt-3.5-turbo"),
    })
    assert status == 402, f"Expected 402, got {status}"
    invoice = created["invoice"]
    print(f"\n    Pay this invoice ({created['amount_sats']} sats):\n\n    {invoice}\n")

    # 3-4. Poll
    print("[3] Waiting for payment...")
    deadline = time.time() + POLL_TIMEOUT
    while time.time() < deadline:
        status, verified = api("POST", "/api/invoice/verify", {"invoice": invoice})
        if status == 200:
            print(f"    Paid! Conversation: {verified['payment']['conversation_id']}\n")
            break
        if status != 402:
            print(f"    Verification failed: {verified['error']['message']}")
            sys.exit(1)
        print(f"    Not paid yet, waiting {POLL_INTERVAL}s...")
        time.sleep(POLL_INTERVAL)
    else:
        print("    TIMEOUT waiting for payment.")
        sys.exit(1)

    # 5. Replay
    print("[4] Verifying the same invoice again...")
    status, replay = api("POST", "/api/invoice/verify", {"invoice": invoice})
    assert status != 200, "Invoice was accepted twice"
    print(f"    Rejected: {replay['error']['code']}\n")

    print("=== DEMO COMPLETE ===")


if __name__ == "__main__":
    main()
