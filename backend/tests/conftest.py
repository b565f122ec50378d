import hashlib
import io
import itertools
import json
import os
import sys
from pathlib import Path
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from gems_api import models  # noqa: E402,F401
from gems_api.core.config import Settings, get_settings  # noqa: E402
from gems_api.core.security import create_access_token, get_password_hash  # noqa: E402
from gems_api.db.base import Base  # noqa: E402
from gems_api.services.images import ImageService  # noqa: E402
from gems_api.services.storage import B2StorageClient  # noqa: E402

ADMIN_PASSWORD = "Password123"


class FakeB2:
    """In-memory stand-in for the B2 native API, mounted via httpx.MockTransport."""

    api_base = "https://api.b2.test"
    api_url = "https://api001.b2.test"
    download_url = "https://f001.b2.test"
    upload_url = "https://pod-001.b2.test/b2api/v2/b2_upload_file/bucket-1/c001"
    account_token = "account-token"

    def __init__(self) -> None:
        self.files: dict[str, dict] = {}
        self.calls: list[str] = []
        # operation -> (status, code) returned instead of a normal answer
        self.failures: dict[str, tuple[int, str]] = {}
        # operation -> httpx exception class raised by the transport
        self.errors: dict[str, type[httpx.HTTPError]] = {}
        self.reject_uploads: set[str] = set()
        self.reject_deletes: set[str] = set()
        self._ids = itertools.count(1)

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    def reset_calls(self) -> None:
        self.calls.clear()

    @staticmethod
    def _operation(request: httpx.Request) -> str:
        path = request.url.path
        if path.startswith("/file/"):
            return "download"
        return path.split("/b2api/v2/", 1)[1].split("/", 1)[0]

    @staticmethod
    def _error(status: int, code: str, message: str = "fake failure") -> httpx.Response:
        return httpx.Response(status, json={"status": status, "code": code, "message": message})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        operation = self._operation(request)
        self.calls.append(operation)
        if operation in self.errors:
            raise self.errors[operation]("fake transport error", request=request)
        if operation in self.failures:
            status, code = self.failures[operation]
            return self._error(status, code)

        if operation == "b2_authorize_account":
            if not request.headers.get("Authorization", "").startswith("Basic "):
                return self._error(401, "unauthorized")
            return httpx.Response(
                200,
                json={
                    "accountId": "account-1",
                    "authorizationToken": self.account_token,
                    "apiUrl": self.api_url,
                    "downloadUrl": self.download_url,
                },
            )
        if operation == "b2_upload_file":
            return self._upload(request)
        if operation == "download":
            return self._download(request)

        if request.headers.get("Authorization") != self.account_token:
            return self._error(401, "bad_auth_token")
        body = json.loads(request.content or b"{}")

        if operation == "b2_get_upload_url":
            return httpx.Response(
                200,
                json={
                    "bucketId": body["bucketId"],
                    "uploadUrl": self.upload_url,
                    "authorizationToken": f"upload-token-{next(self._ids)}",
                },
            )
        if operation == "b2_list_file_names":
            prefix = body.get("prefix", "")
            names = sorted(
                name
                for name in self.files
                if name >= body["startFileName"] and name.startswith(prefix)
            )[: body["maxFileCount"]]
            return httpx.Response(
                200,
                json={
                    "files": [
                        {"fileId": self.files[name]["id"], "fileName": name} for name in names
                    ],
                    "nextFileName": None,
                },
            )
        if operation == "b2_delete_file_version":
            name = body["fileName"]
            stored = self.files.get(name)
            if name in self.reject_deletes:
                return self._error(500, "internal_error")
            if stored is None or stored["id"] != body["fileId"]:
                return self._error(400, "file_not_present")
            del self.files[name]
            return httpx.Response(200, json={"fileId": body["fileId"], "fileName": name})
        if operation == "b2_list_buckets":
            return httpx.Response(
                200, json={"buckets": [{"bucketId": "bucket-1", "bucketName": "gems-test"}]}
            )
        return self._error(404, "not_found")

    def _upload(self, request: httpx.Request) -> httpx.Response:
        if not request.headers.get("Authorization", "").startswith("upload-token-"):
            return self._error(401, "bad_auth_token")
        name = unquote(request.headers["X-Bz-File-Name"])
        if name in self.reject_uploads:
            return self._error(503, "service_unavailable")
        data = request.content
        if hashlib.sha1(data).hexdigest() != request.headers["X-Bz-Content-Sha1"]:
            return self._error(400, "bad_request", "checksum mismatch")
        file_id = f"4_z{next(self._ids)}"
        self.files[name] = {
            "id": file_id,
            "data": data,
            "content_type": request.headers["Content-Type"],
            "info": {
                key[len("x-bz-info-"):]: value
                for key, value in request.headers.items()
                if key.lower().startswith("x-bz-info-")
            },
        }
        return httpx.Response(200, json={"fileId": file_id, "fileName": name})

    def _download(self, request: httpx.Request) -> httpx.Response:
        _, _, bucket, name = request.url.path.split("/", 3)
        stored = self.files.get(unquote(name))
        if bucket != "gems-test" or stored is None:
            return self._error(404, "not_found", "file not present")
        return httpx.Response(
            200,
            content=stored["data"],
            headers={
                "Content-Type": stored["content_type"],
                "x-bz-content-sha1": hashlib.sha1(stored["data"]).hexdigest(),
            },
        )


@pytest.fixture(scope="session", autouse=True)
def configure_environment():
    os.environ["ENV"] = "test"
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
    os.environ["JWT_SECRET_KEY"] = "test-secret"
    os.environ["ADMIN_USERNAME"] = "admin"
    os.environ["ADMIN_PASSWORD_HASH"] = get_password_hash(ADMIN_PASSWORD)
    get_settings.cache_clear()


@pytest.fixture
def fake_b2() -> FakeB2:
    return FakeB2()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        B2_APPLICATION_KEY_ID="key-id",
        B2_APPLICATION_KEY="application-key",
        B2_BUCKET_ID="bucket-1",
        B2_BUCKET_NAME="gems-test",
        B2_BUCKET_URL="https://cdn.gems.test",
        B2_API_URL=FakeB2.api_base,
        B2_TIMEOUT_SECONDS=2.0,
    )


@pytest_asyncio.fixture
async def storage(settings, fake_b2):
    client = B2StorageClient(settings, transport=httpx.MockTransport(fake_b2))
    yield client
    await client.close()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'assets.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def image_service(storage, session_factory, settings) -> ImageService:
    return ImageService(storage, session_factory=session_factory, settings=settings)


@pytest.fixture
def make_image():
    def _make(fmt: str = "JPEG", size: tuple[int, int] = (640, 480), mode: str = "RGB") -> bytes:
        image = Image.effect_noise(size, 48).convert(mode)
        buffer = io.BytesIO()
        image.save(buffer, format=fmt)
        return buffer.getvalue()

    return _make


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('admin')}"}


@pytest_asyncio.fixture
async def client(image_service):
    from gems_api.main import create_app

    app = create_app()
    # Lifespan is not run under ASGITransport; wire the service the way it would.
    app.state.image_service = image_service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def admin_password() -> str:
    return ADMIN_PASSWORD
