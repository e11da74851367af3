from __future__ import annotations

from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase, TestCase, mock

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from . import storage


class _FakeBlobClient:
    def __init__(self, blob_name: str, *, missing: bool = False):
        self.blob_name = blob_name
        self.uploaded = []
        self.deleted = False
        self._missing = missing
        self.url = f"https://example.com/{blob_name}"

    def upload_blob(self, content: bytes, overwrite: bool = True, **kwargs):
        self.uploaded.append((content, overwrite, kwargs))

    def delete_blob(self):
        if self._missing:
            raise ResourceNotFoundError(message="missing")
        self.deleted = True


class _FakeContainerClient:
    def __init__(
        self,
        *,
        creation_exception: Exception | None = None,
        public_access: str | None = "blob",
        missing_blobs: bool = False,
    ):
        self._creation_exception = creation_exception
        self._public_access = public_access
        self._missing_blobs = missing_blobs
        self.create_calls: list[str | None] = []
        self._latest_blob_client: _FakeBlobClient | None = None

    def create_container(self, public_access: str | None = None):
        self.create_calls.append(public_access)
        if self._creation_exception and public_access:
            raise self._creation_exception
        if public_access:
            self._public_access = public_access

    def get_container_properties(self):
        return SimpleNamespace(public_access=self._public_access)

    def get_blob_client(self, blob_name: str) -> _FakeBlobClient:
        self._latest_blob_client = _FakeBlobClient(blob_name, missing=self._missing_blobs)
        return self._latest_blob_client


class _FakeBlobService:
    def __init__(
        self,
        container_client: _FakeContainerClient,
        *,
        credential: object | None = None,
        user_delegation_key: object | None = None,
    ):
        self._container_client = container_client
        self.account_name = "account-name"
        self.credential = credential if credential is not None else object()
        self._user_delegation_key = user_delegation_key
        self.container_names: list[str] = []

    def get_container_client(self, container_name: str) -> _FakeContainerClient:
        self.container_names.append(container_name)
        return self._container_client

    def get_user_delegation_key(self, start, expiry):  # noqa: D401 - behaviour tested via assertions
        self.user_delegation_key_args = (start, expiry)
        if self._user_delegation_key is None:
            raise RuntimeError("user delegation key not configured")
        return self._user_delegation_key


def _private_container() -> _FakeContainerClient:
    error = HttpResponseError(message="forbidden")
    error.error_code = "PublicAccessNotPermitted"
    return _FakeContainerClient(creation_exception=error, public_access=None)


class StripBucketPrefixTests(TestCase):
    def test_prefix_removed(self):
        self.assertEqual(storage.strip_bucket_prefix("quiz-logos", "quiz-logos/sf_logo.jpg"), "sf_logo.jpg")

    def test_other_paths_untouched(self):
        self.assertEqual(storage.strip_bucket_prefix("quiz-logos", "quiz-backgrounds/a.png"), "quiz-backgrounds/a.png")
        self.assertEqual(storage.strip_bucket_prefix("quiz-logos", "/logo.png"), "logo.png")


class UploadImageTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:  # noqa: D401 - standard unittest hook
        self.blobs = storage.BlobStorage("UseDevelopmentStorage=true")

    async def test_upload_public_container(self):
        container = _FakeContainerClient()
        service = _FakeBlobService(container)

        with mock.patch.object(self.blobs, "_get_blob_service", return_value=service), mock.patch(
            "backend.trivia.storage.generate_blob_sas"
        ) as mock_generate_sas:
            url = await self.blobs.upload("quiz-logos", "1700000000000-logo.png", b"data", "image/png")

        blob = container._latest_blob_client
        self.assertEqual(url, blob.url)
        self.assertEqual(blob.blob_name, "1700000000000-logo.png")
        self.assertEqual(container.create_calls, ["blob"])
        self.assertEqual(service.container_names[0], "quiz-logos")
        content, overwrite, kwargs = blob.uploaded[0]
        self.assertEqual(content, b"data")
        self.assertTrue(overwrite)
        self.assertEqual(kwargs["content_settings"].content_type, "image/png")
        mock_generate_sas.assert_not_called()

    async def test_container_created_once_per_bucket(self):
        container = _FakeContainerClient()
        service = _FakeBlobService(container)

        with mock.patch.object(self.blobs, "_get_blob_service", return_value=service):
            await self.blobs.upload("quiz-logos", "a.png", b"a", "image/png")
            await self.blobs.upload("quiz-logos", "b.png", b"b", "image/png")
            await self.blobs.upload("quiz-backgrounds", "c.png", b"c", "image/png")

        self.assertEqual(container.create_calls, ["blob", "blob"])

    async def test_upload_private_container_generates_sas(self):
        container = _private_container()
        credential = object()
        service = _FakeBlobService(container, credential=credential)

        with mock.patch.object(self.blobs, "_get_blob_service", return_value=service), mock.patch(
            "backend.trivia.storage.generate_blob_sas", return_value="sig"
        ) as mock_generate_sas:
            url = await self.blobs.upload("quiz-backgrounds", "bg.png", b"data", "image/png")

        self.assertTrue(url.endswith("?sig"))
        self.assertEqual(container.create_calls, ["blob", None])
        kwargs = mock_generate_sas.call_args.kwargs
        self.assertEqual(kwargs["account_name"], service.account_name)
        self.assertEqual(kwargs["container_name"], "quiz-backgrounds")
        self.assertEqual(kwargs["blob_name"], container._latest_blob_client.blob_name)
        self.assertIs(kwargs["credential"], credential)
        self.assertEqual(str(kwargs["permission"]), str(storage.BlobSasPermissions(read=True)))
        self.assertIn("expiry", kwargs)

    async def test_private_container_uses_user_delegation_key_for_token_credentials(self):
        class _TokenCredential(storage.TokenCredential):
            def get_token(self, *args, **kwargs):  # pragma: no cover - interface stub
                raise NotImplementedError

        container = _private_container()
        delegation_key = object()
        service = _FakeBlobService(
            container,
            credential=_TokenCredential(),
            user_delegation_key=delegation_key,
        )

        with mock.patch.object(self.blobs, "_get_blob_service", return_value=service), mock.patch(
            "backend.trivia.storage.generate_blob_sas", return_value="sig"
        ) as mock_generate_sas:
            url = await self.blobs.upload("quiz-logos", "logo.png", b"data", "image/png")

        self.assertTrue(url.endswith("?sig"))
        kwargs = mock_generate_sas.call_args.kwargs
        self.assertEqual(kwargs["user_delegation_key"], delegation_key)
        self.assertEqual(kwargs["container_name"], "quiz-logos")
        start, expiry = service.user_delegation_key_args
        self.assertLessEqual(start, expiry)

    async def test_empty_upload_rejected(self):
        with self.assertRaises(ValueError):
            await self.blobs.upload("quiz-logos", "logo.png", b"", "image/png")

    async def test_unknown_bucket_rejected(self):
        with self.assertRaises(ValueError):
            await self.blobs.upload("avatars", "logo.png", b"data", "image/png")

    async def test_unconfigured_storage_raises(self):
        blobs = storage.BlobStorage(None)
        self.assertFalse(blobs.configured)
        with self.assertRaises(storage.StorageNotConfigured):
            await blobs.public_url("quiz-logos", "logo.png")


class PublicUrlAndDeleteTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.blobs = storage.BlobStorage("UseDevelopmentStorage=true")

    async def test_public_url_strips_bucket_prefix(self):
        container = _FakeContainerClient()
        service = _FakeBlobService(container)

        with mock.patch.object(self.blobs, "_get_blob_service", return_value=service):
            url = await self.blobs.public_url("quiz-logos", "quiz-logos/sf_logo.jpg")

        self.assertEqual(url, "https://example.com/sf_logo.jpg")

    async def test_delete_blob(self):
        container = _FakeContainerClient()
        service = _FakeBlobService(container)

        with mock.patch.object(self.blobs, "_get_blob_service", return_value=service):
            await self.blobs.delete("quiz-backgrounds", "quiz-backgrounds/bg.png")

        self.assertTrue(container._latest_blob_client.deleted)
        self.assertEqual(container._latest_blob_client.blob_name, "bg.png")

    async def test_delete_missing_blob_is_not_an_error(self):
        container = _FakeContainerClient(missing_blobs=True)
        service = _FakeBlobService(container)

        with mock.patch.object(self.blobs, "_get_blob_service", return_value=service):
            await self.blobs.delete("quiz-logos", "gone.png")
