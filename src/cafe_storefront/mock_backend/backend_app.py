"""Mock hosted backend mini-application.

Creates a self-contained FastAPI sub-app that implements the hosted
endpoints the storefront consumes (products table, password auth, object
storage and the two serverless functions) using in-memory state.
Designed to be mounted inside the storefront application for demo and
testing purposes.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

_SEED_FILE = Path(__file__).parent / "seed" / "cafe_products.json"


def load_seed_products(seed_file: Path | None = None) -> list[dict[str, Any]]:
    """Load the bundled demo catalog."""
    path = seed_file or _SEED_FILE
    if not path.exists():
        raise FileNotFoundError(f"Seed catalog not found: {path}")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _matches(row: dict[str, Any], column: str, expression: str) -> bool:
    """Evaluate a ``eq.<value>`` / ``neq.<value>`` column filter."""
    operator, _, expected = expression.partition(".")
    actual = row.get(column)
    if isinstance(actual, bool):
        actual = str(actual).lower()
    equal = str(actual) == expected
    if operator == "eq":
        return equal
    if operator == "neq":
        return not equal
    raise HTTPException(status_code=400, detail=f"Unsupported filter operator: {operator}")


class MockBackendApp:
    """A self-contained mock of the hosted backend.

    Parameters
    ----------
    products:
        Rows of the products table.
    table:
        Name of the products table.
    auto_confirm:
        When true, sign-up returns a session immediately.
    """

    def __init__(
        self,
        products: list[dict[str, Any]] | None = None,
        table: str = "cafe_products",
        auto_confirm: bool = False,
    ) -> None:
        self.table = table
        self.products: list[dict[str, Any]] = products if products is not None else load_seed_products()
        self.auto_confirm = auto_confirm

        # In-memory state
        self.users: dict[str, dict[str, Any]] = {}
        self.tokens: dict[str, str] = {}
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.payment_sessions: dict[str, dict[str, Any]] = {}
        self.sent_emails: list[dict[str, Any]] = []

        # Failure switches for exercising error paths
        self.fail_payments: str | None = None
        self.fail_emails: str | None = None

        self.app = self._build_app()

    def add_user(self, email: str, password: str, name: str | None = None) -> dict[str, Any]:
        user = {
            "id": str(uuid.uuid4()),
            "email": email,
            "password": password,
            "user_metadata": {"name": name},
            "created_at": datetime.now(tz=timezone.utc).isoformat(),
        }
        self.users[email.lower()] = user
        return user

    def _issue_session(self, user: dict[str, Any]) -> dict[str, Any]:
        token = uuid.uuid4().hex
        self.tokens[token] = user["email"].lower()
        public_user = {k: v for k, v in user.items() if k != "password"}
        return {
            "access_token": token,
            "token_type": "bearer",
            "expires_in": 3600,
            "refresh_token": uuid.uuid4().hex,
            "user": public_user,
        }

    # ------------------------------------------------------------------
    # App builder
    # ------------------------------------------------------------------

    def _build_app(self) -> FastAPI:
        """Construct the FastAPI sub-app with all hosted endpoints."""
        app = FastAPI(title="Mock Hosted Backend")

        backend = self  # capture for closures

        # -- Products table --------------------------------------------

        @app.get("/rest/v1/{table}")
        async def select_rows(table: str, request: Request) -> list[dict[str, Any]]:
            if table != backend.table:
                raise HTTPException(status_code=404, detail=f"Relation {table} does not exist")

            rows = list(backend.products)
            params = request.query_params
            for column in ("id", "category", "featured"):
                if column in params:
                    rows = [r for r in rows if _matches(r, column, params[column])]

            order = params.get("order")
            if order:
                column, _, direction = order.partition(".")
                rows.sort(key=lambda r: str(r.get(column, "")).lower(), reverse=direction == "desc")

            if "limit" in params:
                rows = rows[: int(params["limit"])]
            return rows

        @app.post("/rest/v1/{table}", status_code=201)
        async def insert_row(table: str, body: dict[str, Any]) -> list[dict[str, Any]]:
            if table != backend.table:
                raise HTTPException(status_code=404, detail=f"Relation {table} does not exist")
            for column in ("name", "price"):
                if column not in body:
                    return JSONResponse(  # type: ignore[return-value]
                        status_code=400,
                        content={"message": f'null value in column "{column}" violates not-null constraint'},
                    )
            row = {"id": str(uuid.uuid4()), **body}
            row["created_at"] = datetime.now(tz=timezone.utc).isoformat()
            backend.products.append(row)
            return [row]

        # -- Auth --------------------------------------------------------

        @app.post("/auth/v1/token")
        async def token(grant_type: str, body: dict[str, Any]) -> dict[str, Any]:
            if grant_type != "password":
                raise HTTPException(status_code=400, detail="Unsupported grant type")
            user = backend.users.get(str(body.get("email", "")).lower())
            if user is None or user["password"] != body.get("password"):
                return JSONResponse(  # type: ignore[return-value]
                    status_code=400,
                    content={"error": "invalid_grant", "error_description": "Invalid login credentials"},
                )
            return backend._issue_session(user)

        @app.post("/auth/v1/signup")
        async def signup(body: dict[str, Any]) -> dict[str, Any]:
            email = str(body.get("email", ""))
            password = str(body.get("password", ""))
            if email.lower() in backend.users:
                return JSONResponse(  # type: ignore[return-value]
                    status_code=422, content={"msg": "User already registered"}
                )
            if len(password) < 6:
                return JSONResponse(  # type: ignore[return-value]
                    status_code=422, content={"msg": "Password should be at least 6 characters"}
                )
            name = (body.get("data") or {}).get("name")
            user = backend.add_user(email, password, name)
            if backend.auto_confirm:
                return backend._issue_session(user)
            return {k: v for k, v in user.items() if k != "password"}

        @app.post("/auth/v1/logout", status_code=204)
        async def logout(request: Request) -> Response:
            auth_header = request.headers.get("Authorization", "")
            backend.tokens.pop(auth_header.removeprefix("Bearer "), None)
            return Response(status_code=204)

        # -- Storage -----------------------------------------------------

        @app.post("/storage/v1/object/{bucket}/{object_path:path}")
        async def upload_object(bucket: str, object_path: str, request: Request) -> dict[str, Any]:
            key = f"{bucket}/{object_path}"
            if key in backend.objects and request.headers.get("x-upsert") != "true":
                return JSONResponse(  # type: ignore[return-value]
                    status_code=409, content={"error": "Duplicate", "message": "The resource already exists"}
                )
            content_type = request.headers.get("content-type", "application/octet-stream")
            backend.objects[key] = (await request.body(), content_type)
            return {"Key": key}

        @app.get("/storage/v1/object/public/{bucket}/{object_path:path}")
        async def download_object(bucket: str, object_path: str) -> Response:
            stored = backend.objects.get(f"{bucket}/{object_path}")
            if stored is None:
                raise HTTPException(status_code=404, detail="Object not found")
            content, content_type = stored
            return Response(content=content, media_type=content_type)

        # -- Serverless functions ---------------------------------------

        @app.post("/functions/v1/create-checkout-session")
        async def create_checkout_session(body: dict[str, Any]) -> dict[str, Any]:
            if backend.fail_payments:
                return JSONResponse(  # type: ignore[return-value]
                    status_code=400,
                    content={"success": False, "error": f"Stripe error: {backend.fail_payments}"},
                )

            items = body.get("items")
            if not isinstance(items, list) or not items:
                return JSONResponse(  # type: ignore[return-value]
                    status_code=500,
                    content={"success": False, "error": "No items provided or invalid items format"},
                )
            for field in ("successUrl", "cancelUrl"):
                if not body.get(field):
                    return JSONResponse(  # type: ignore[return-value]
                        status_code=500,
                        content={"success": False, "error": f"{field} is required"},
                    )
            for item in items:
                if not item.get("name") or not isinstance(item.get("price"), (int, float)) or not item.get("image"):
                    return JSONResponse(  # type: ignore[return-value]
                        status_code=500,
                        content={"success": False, "error": f"Invalid item data: {item.get('id')}"},
                    )

            session_id = f"cs_test_{uuid.uuid4().hex[:16]}"
            backend.payment_sessions[session_id] = {
                "id": session_id,
                "line_items": [
                    {
                        "currency": (item.get("currency") or "usd").lower(),
                        "name": item["name"],
                        "unit_amount": round(item["price"] * 100),
                        "quantity": item.get("quantity") or 1,
                    }
                    for item in items
                ],
                "customer_email": body.get("customerEmail"),
                "success_url": body["successUrl"],
                "cancel_url": body["cancelUrl"],
            }
            return {"id": session_id, "url": f"https://checkout.stripe.test/pay/{session_id}"}

        @app.post("/functions/v1/send-order-confirmation")
        async def send_order_confirmation(body: dict[str, Any]) -> dict[str, Any]:
            if backend.fail_emails:
                return JSONResponse(  # type: ignore[return-value]
                    status_code=500, content={"success": False, "error": backend.fail_emails}
                )
            email_id = str(uuid.uuid4())
            backend.sent_emails.append({"id": email_id, **body})
            return {"success": True, "data": {"id": email_id}}

        return app
