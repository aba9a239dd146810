#!/usr/bin/env python3
"""
End-to-end smoke test of the messaging API over HTTP.

- Register and log in a member
- Member writes to the administrators (with an attachment)
- Admin (credentials from E2E_ADMIN_EMAIL / E2E_ADMIN_PASSWORD) replies
- Member sees the unread reply, opens the thread, marks everything read

Run against a live server:  E2E_BASE_URL=http://localhost:8000 python scripts/e2e_messaging.py
"""

import json
import os
import sys
import time

import requests

BASE_URL = os.environ.get("E2E_BASE_URL", "http://localhost:8000")
ADMIN_EMAIL = os.environ.get("E2E_ADMIN_EMAIL")
ADMIN_PASSWORD = os.environ.get("E2E_ADMIN_PASSWORD")

SESSION = requests.Session()


def print_step(step_num: int, description: str):
    print(f"\n{'='*60}")
    print(f"STEP {step_num}: {description}")
    print('='*60)


def print_result(status: str, message: str, data: dict = None):
    print(f"{'✓' if status == 'OK' else '✗'} {message}")
    if data:
        print(f"  Response: {json.dumps(data, indent=2)}")


def headers_for(token: str) -> dict:
    csrf = SESSION.get(f"{BASE_URL}/auth/csrf-token", timeout=5).json()["csrf_token"]
    return {"Authorization": f"Bearer {token}", "X-CSRF-Token": csrf}


def login(email: str, password: str):
    resp = SESSION.post(f"{BASE_URL}/auth/login", json={"email": email, "password": password}, timeout=5)
    if resp.status_code != 200:
        print_result("ERROR", f"Login {email} failed: {resp.status_code}", resp.json())
        return None
    return resp.json()["access_token"]


def register_member():
    print_step(1, "Register and log in a member")

    stamp = int(time.time())
    user = {"username": f"member_{stamp}", "email": f"member_{stamp}@example.com", "password": "SecurePass123!"}

    resp = SESSION.post(f"{BASE_URL}/auth/register", json=user, timeout=5)
    if resp.status_code != 201:
        print_result("ERROR", f"Registration failed: {resp.status_code}", resp.json())
        return None
    print_result("OK", f"Registered '{user['username']}' as id={resp.json()['id']}")

    token = login(user["email"], user["password"])
    if token:
        print_result("OK", "Member logged in")
    return token


def write_to_admins(token: str):
    print_step(2, "Member writes to the administrators")

    resp = SESSION.post(
        f"{BASE_URL}/messages",
        data={"recipient": "admin", "subject": "Question about my membership", "content": "Hello,\nhow do I renew?"},
        files=[("attachments", ("receipt.txt", b"order #1234", "text/plain"))],
        headers=headers_for(token),
        timeout=10,
    )
    if resp.status_code != 201:
        print_result("ERROR", f"Send failed: {resp.status_code}", resp.json())
        return None

    body = resp.json()
    print_result("OK", f"Message {body['message']['id']} delivered to {body['recipient_count']} admin(s)")
    if body["failed_attachments"]:
        print_result("ERROR", "Some attachments were not stored", {"failed": body["failed_attachments"]})
    return body["message"]["id"]


def admin_replies(message_id: int):
    print_step(3, "Admin reads and replies")

    if not ADMIN_EMAIL or not ADMIN_PASSWORD:
        print_result("OK", "Skipped: E2E_ADMIN_EMAIL / E2E_ADMIN_PASSWORD not set")
        return None

    token = login(ADMIN_EMAIL, ADMIN_PASSWORD)
    if not token:
        return None

    opened = SESSION.get(f"{BASE_URL}/messages/{message_id}", headers={"Authorization": f"Bearer {token}"}, timeout=5)
    if opened.status_code != 200:
        print_result("ERROR", f"Admin could not open message: {opened.status_code}", opened.json())
        return None
    print_result("OK", f"Admin opened '{opened.json()['message']['subject']}'")

    resp = SESSION.post(
        f"{BASE_URL}/messages/{message_id}/reply",
        data={"content": "Renewal is under Settings > Membership."},
        headers=headers_for(token),
        timeout=5,
    )
    if resp.status_code != 201:
        print_result("ERROR", f"Reply failed: {resp.status_code}", resp.json())
        return None

    reply_id = resp.json()["message"]["id"]
    print_result("OK", f"Reply {reply_id} sent")
    return reply_id


def member_reads(token: str, message_id: int, expect_reply: bool):
    print_step(4, "Member checks unread messages and the thread")
    auth = {"Authorization": f"Bearer {token}"}

    count = SESSION.get(f"{BASE_URL}/messages/unread/count", headers=auth, timeout=5).json()["count"]
    if expect_reply and count < 1:
        print_result("ERROR", f"Expected an unread reply, got count={count}")
        return False
    print_result("OK", f"Unread count: {count}")

    thread = SESSION.get(f"{BASE_URL}/messages/{message_id}/thread", headers=auth, timeout=5).json()
    print_result("OK", f"Thread has {len(thread['replies'])} repl(y/ies)")

    resp = SESSION.put(f"{BASE_URL}/messages/read-all", headers=headers_for(token), timeout=5)
    if resp.status_code != 200:
        print_result("ERROR", f"Mark all read failed: {resp.status_code}", resp.json())
        return False

    remaining = SESSION.get(f"{BASE_URL}/messages/unread/count", headers=auth, timeout=5).json()["count"]
    if remaining != 0:
        print_result("ERROR", f"Unread count still {remaining} after read-all")
        return False
    print_result("OK", f"Marked {resp.json()['count']} message(s) read")
    return True


def main():
    print(f"Messaging E2E against {BASE_URL}")

    try:
        SESSION.get(f"{BASE_URL}/health", timeout=5).raise_for_status()
    except requests.RequestException as e:
        print_result("ERROR", f"Server not reachable: {e}")
        return 1

    token = register_member()
    if not token:
        return 1

    message_id = write_to_admins(token)
    if not message_id:
        return 1

    reply_id = admin_replies(message_id)

    if not member_reads(token, message_id, expect_reply=reply_id is not None):
        return 1

    print("\nAll steps passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
