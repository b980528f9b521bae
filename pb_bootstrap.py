# ==== pb_bootstrap.py ====
# Prepares a PocketBase server for ProTrack sync through the Admin API:
# upserts the state collection and, with --seed, creates the empty state record.
# Run with:  python pb_bootstrap.py --url http://127.0.0.1:8090 --email admin@example.com --password ...
# (or set PB_BASE / PB_ADMIN_EMAIL / PB_ADMIN_PASSWORD)

import argparse
import os
import sys

import requests

from core import config
from core.exceptions import CloudError
from core.models import Aggregate


def die(msg):
    print(msg)
    sys.exit(1)


class PBAdmin:
    def __init__(self, base, session=None):
        self.base = base.rstrip('/')
        self.s = session or requests.Session()

    def _call(self, method, path, label, missing_ok=False, **kwargs):
        try:
            r = getattr(self.s, method)(f"{self.base}{path}", timeout=20, **kwargs)
        except requests.RequestException as e:
            raise CloudError(f"[{label}] {e}")
        if missing_ok and r.status_code == 404:
            return None
        if not r.ok:
            raise CloudError(f"[{label}] {r.status_code}: {r.text}")
        return r.json()

    def admin_login(self, email, password):
        data = self._call("post", "/api/admins/auth-with-password", "LOGIN",
                          json={"identity": email, "password": password})
        if not data.get("token"):
            raise CloudError("[LOGIN] missing token")
        self.s.headers.update({"Authorization": f"Bearer {data['token']}"})

    def get_collection(self, name_or_id):
        return self._call("get", f"/api/collections/{name_or_id}", f"GET {name_or_id}", missing_ok=True)

    def create_collection(self, payload):
        return self._call("post", "/api/collections", f"CREATE {payload.get('name')}", json=payload)

    def update_collection(self, id_or_name, payload):
        return self._call("patch", f"/api/collections/{id_or_name}", f"UPDATE {id_or_name}", json=payload)

    def get_record(self, collection, record_id):
        return self._call("get", f"/api/collections/{collection}/records/{record_id}",
                          f"GET {collection}/{record_id}", missing_ok=True)

    def create_record(self, collection, payload):
        return self._call("post", f"/api/collections/{collection}/records",
                          f"SEED {collection}/{payload.get('id')}", json=payload)


def spec_state_collection(name: str = config.DEFAULT_COLLECTION):
    # one record holds the whole aggregate in `payload`; rules restrict it to its owner
    owner_only = "owner = @request.auth.id"
    return {
        "name": name,
        "type": "base",
        "schema": [
            {"name": "payload", "type": "json", "required": False, "options": {"maxSize": 5242880}},
            {"name": "owner", "type": "relation", "required": False,
             "options": {"collectionId": "_pb_users_auth_", "cascadeDelete": True, "maxSelect": 1}},
        ],
        "listRule": owner_only,
        "viewRule": owner_only,
        "createRule": "@request.auth.id != ''",
        "updateRule": owner_only,
        "deleteRule": owner_only,
    }


def upsert_collection(pb: PBAdmin, spec: dict):
    existing = pb.get_collection(spec["name"])
    if not existing:
        return pb.create_collection(spec)
    cid = existing.get("id") or spec["name"]
    # patch by id, keeping the name the server already knows
    return pb.update_collection(cid, dict(spec, id=cid, name=existing["name"]))


def seed_document(pb: PBAdmin, collection: str, document_id: str, owner: str):
    """Create the state record with an empty aggregate unless it already exists.

    The owner is mandatory: the collection rules only show a record to its owner.
    """
    if not owner:
        raise CloudError("[SEED] an owner user id is required")
    existing = pb.get_record(collection, document_id)
    if existing:
        return existing, False
    body = {"id": document_id, "payload": Aggregate().to_dict(), "owner": owner}
    return pb.create_record(collection, body), True


def main(argv=None):
    p = argparse.ArgumentParser(description="Create the ProTrack sync collection in PocketBase")
    p.add_argument("--url", default=os.getenv("PB_BASE", "http://127.0.0.1:8090"))
    p.add_argument("--email", default=os.getenv("PB_ADMIN_EMAIL"))
    p.add_argument("--password", default=os.getenv("PB_ADMIN_PASSWORD"))
    p.add_argument("--collection", default=config.DEFAULT_COLLECTION)
    p.add_argument("--seed", metavar="DOCUMENT_ID", nargs="?", const=config.DEFAULT_DOCUMENT_ID,
                   help="also create the empty state record")
    p.add_argument("--owner", help="user id owning the seeded record (required with --seed)")
    args = p.parse_args(argv)
    if not args.email or not args.password:
        die("Admin email and password are required (--email/--password or PB_ADMIN_EMAIL/PB_ADMIN_PASSWORD)")
    if args.seed and not args.owner:
        die("--seed needs --owner: records without an owner are invisible to the sync user")

    pb = PBAdmin(args.url)
    try:
        pb.admin_login(args.email, args.password)
        print("[OK] Admin login")
        col = upsert_collection(pb, spec_state_collection(args.collection))
        print("[OK] collection", args.collection, col.get("id"))
        if args.seed:
            _, created = seed_document(pb, args.collection, args.seed, args.owner)
            print("[OK] state record", args.seed, "created" if created else "already present")
    except CloudError as e:
        die(str(e))
    print("Bootstrap complete.")


if __name__ == "__main__":
    main()
