#!/usr/bin/env python3
"""
SkillWave Quickstart — one help session over the REST API.

Signs in two students → seeds a request → the second accepts it →
they trade messages → the helper completes it.
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running (skillwave serve) and seeded (skillwave seed).
"""

import os
import sys
import uuid

import httpx

BASE = os.environ.get("SKILLWAVE_API_URL", "http://localhost:3001").rstrip("/") + "/api"


def sign_in(client: httpx.Client, name: str, run_id: str) -> tuple[dict, dict]:
    """Sign in through the Google profile endpoint; returns (user, headers)."""
    resp = client.post("/auth/google", json={
        "email": f"{name.lower()}-{run_id}@example.com",
        "name": name,
        "googleId": f"demo-{name.lower()}-{run_id}",
    })
    assert resp.status_code == 200, f"Sign-in failed: {resp.text}"
    body = resp.json()
    return body["user"], {"Authorization": f"Bearer {body['token']}"}


def main():
    run_id = uuid.uuid4().hex[:6]
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Health check ──────────────────────────────────────────────
    print("Checking backend health...")
    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        print(f"Backend not reachable at {BASE}")
        sys.exit(1)
    health = resp.json()
    print(f"  Database: {health['database']}")
    print(f"  Redis:    {health['redis']}")

    # ── Sign in ───────────────────────────────────────────────────
    print("\n1. Signing in two students...")
    alice, alice_auth = sign_in(client, "Alice", run_id)
    bob, bob_auth = sign_in(client, "Bob", run_id)
    print(f"   Requester: {alice['name']} ({alice['id'][:8]}...)")
    print(f"   Helper:    {bob['name']} ({bob['id'][:8]}...)")

    # ── Pick a category ───────────────────────────────────────────
    categories = client.get("/requests/categories/all").json()
    if not categories:
        print("No categories. Run `skillwave seed` first.")
        sys.exit(1)
    category = next((c for c in categories if c["name"] == "Programming"), categories[0])

    # ── Create request ────────────────────────────────────────────
    print("\n2. Creating help request...")
    resp = client.post("/requests", headers=alice_auth, json={
        "title": "Help with recursion",
        "description": "My tree walk never terminates",
        "categoryId": category["id"],
        "skillsNeeded": ["python"],
        "urgency": "high",
    })
    assert resp.status_code == 201, f"Failed: {resp.text}"
    req = resp.json()
    print(f"   Request {req['id'][:8]}...: {req['title']} [{req['status']}]")

    # ── Accept ────────────────────────────────────────────────────
    print("\n3. Bob accepts...")
    resp = client.post(f"/requests/{req['id']}/accept", headers=bob_auth)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   Status: {resp.json()['status']}")

    # ── Chat ──────────────────────────────────────────────────────
    print("\n4. Chatting...")
    for headers, text in [
        (alice_auth, "Thanks for picking this up!"),
        (bob_auth, "Can you share the function?"),
    ]:
        resp = client.post("/messages", headers=headers, json={
            "requestId": req["id"],
            "content": text,
        })
        assert resp.status_code == 201, f"Failed: {resp.text}"
        msg = resp.json()
        print(f"   {msg['senderName']}: {msg['content']}")

    unread = client.get("/messages/unread/count", headers=alice_auth).json()
    print(f"   Alice has {unread['count']} unread")
    client.put(f"/messages/request/{req['id']}/read", headers=alice_auth)

    # ── Complete ──────────────────────────────────────────────────
    print("\n5. Bob completes the request...")
    resp = client.post(f"/requests/{req['id']}/complete", headers=bob_auth)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    done = resp.json()

    print(f"\n✓ Session finished. Request {done['id'][:8]}... is {done['status']}.")


if __name__ == "__main__":
    main()
