import asyncio
import hashlib
import hmac
import json
import tempfile
import time
import unittest
from io import BytesIO
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

from PIL import Image

import ai
import auth
import db


def run(coro):
    return asyncio.run(coro)


def make_png(width: int = 400, height: int = 300, color: Tuple[int, int, int] = (255, 255, 255)) -> bytes:
    out = BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


def open_png(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


def sign_stripe_payload(payload: str, secret: str, timestamp: Optional[int] = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeOpenAI:
    """Stands in for ``openai.OpenAI``; replies are queued per test."""

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply, ensure_ascii=False)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


class DatabaseTestCase(unittest.TestCase):
    """Fresh SQLite store per test."""

    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        run(db.init_db(Path(self.tmpdir.name) / "test.db"))

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def create_user(
        self,
        email: str = "amal@example.com",
        password: str = "secret123",
        name: str = "Amal",
        verified: bool = True,
        device_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        user = run(db.create_user(name, email, auth.hash_password(password), device_id))
        if verified:
            user = run(db.verify_user_account(user["verificationToken"]))
        return user


class FakeAIMixin:
    def install_fake_ai(self, replies: Optional[List[Any]] = None) -> FakeOpenAI:
        fake = FakeOpenAI(replies)
        ai.set_client(fake)
        self.addCleanup(ai.set_client, None)
        return fake


class AppTestCase(DatabaseTestCase):
    """TestClient over the app with a fresh store. Startup hooks are not run."""

    def setUp(self) -> None:
        super().setUp()
        from fastapi.testclient import TestClient

        import main

        self.client = TestClient(main.app)

    def login(self, email: str = "amal@example.com", password: str = "secret123") -> Dict[str, Any]:
        response = self.client.post("/api/auth/login", json={"email": email, "password": password})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["user"]

    def signed_in_user(self, **kwargs: Any) -> Dict[str, Any]:
        user = self.create_user(**kwargs)
        self.login(user["email"], kwargs.get("password", "secret123"))
        return user
