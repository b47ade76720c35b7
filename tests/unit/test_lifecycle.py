"""Unit tests for the model lifecycle manager.

Covers:
  - Moderation disabled → BYPASSED, the asset is never touched
  - Asset missing, no URL → DEGRADED (never raises)
  - Session factory failure / geometry mismatch / bad output → DEGRADED
  - Asset present → READY with a working classifier
  - One-time download via httpx (MockTransport): success, HTTP error, empty body
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable
from unittest.mock import MagicMock

import httpx
import pytest

from photogate.config import Config
from photogate.models.moderation import GateState
from photogate.moderation.errors import ModelLoadError
from photogate.moderation.lifecycle import ensure_model_asset, load_model_handle


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _config(tmp_path: Path, *, enabled: bool = True, url: str | None = None) -> Config:
    config = Config.defaults()
    config.moderation.enabled = enabled
    config.model.path = str(tmp_path / "models" / "nsfw.onnx")
    config.model.url = url
    return config


def _write_asset(config: Config) -> Path:
    path = Path(config.model.path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"onnx-model-bytes")
    return path


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ─── Bypass ───────────────────────────────────────────────────────────────────


class TestDisabledModeration:
    @pytest.mark.asyncio
    async def test_returns_bypassed_without_loading(self, tmp_path: Path) -> None:
        factory = MagicMock(side_effect=AssertionError("must not load"))
        handle = await load_model_handle(
            _config(tmp_path, enabled=False), session_factory=factory
        )
        assert handle.state is GateState.BYPASSED
        assert handle.classifier is None
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_bypassed_carries_configured_spec(self, tmp_path: Path) -> None:
        config = _config(tmp_path, enabled=False)
        config.model.input_size = 299
        handle = await load_model_handle(config)
        assert handle.spec.input_size == 299


# ─── Load failures ────────────────────────────────────────────────────────────


class TestLoadFailures:
    @pytest.mark.asyncio
    async def test_missing_asset_without_url_is_degraded(self, tmp_path: Path) -> None:
        factory = MagicMock()
        handle = await load_model_handle(_config(tmp_path), session_factory=factory)
        assert handle.state is GateState.DEGRADED
        assert "not found" in (handle.failure_reason or "")
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_factory_failure_is_degraded(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        _write_asset(config)
        factory = MagicMock(side_effect=RuntimeError("corrupt protobuf"))
        handle = await load_model_handle(config, session_factory=factory)
        assert handle.state is GateState.DEGRADED
        assert "corrupt protobuf" in (handle.failure_reason or "")

    @pytest.mark.asyncio
    async def test_geometry_mismatch_is_degraded(
        self, tmp_path: Path, fake_session: Callable
    ) -> None:
        config = _config(tmp_path)
        _write_asset(config)
        handle = await load_model_handle(
            config, session_factory=lambda path: fake_session(input_shape=[1, 299, 299, 3])
        )
        assert handle.state is GateState.DEGRADED

    @pytest.mark.asyncio
    async def test_label_count_mismatch_is_degraded(
        self, tmp_path: Path, fake_session: Callable
    ) -> None:
        config = _config(tmp_path)
        _write_asset(config)
        handle = await load_model_handle(
            config, session_factory=lambda path: fake_session(scores=[[0.5, 0.5]])
        )
        assert handle.state is GateState.DEGRADED
        assert "Smoke classification failed" in (handle.failure_reason or "")


# ─── Successful load ──────────────────────────────────────────────────────────


class TestSuccessfulLoad:
    @pytest.mark.asyncio
    async def test_existing_asset_is_ready(
        self, tmp_path: Path, fake_session: Callable
    ) -> None:
        config = _config(tmp_path)
        path = _write_asset(config)
        opened: list[str] = []

        def factory(model_path: str) -> object:
            opened.append(model_path)
            return fake_session()

        handle = await load_model_handle(config, session_factory=factory)

        assert handle.state is GateState.READY
        assert handle.classifier is not None
        assert handle.failure_reason is None
        assert opened == [str(path)]

    @pytest.mark.asyncio
    async def test_existing_asset_is_not_downloaded(
        self, tmp_path: Path, fake_session: Callable
    ) -> None:
        config = _config(tmp_path, url="https://models.example.org/nsfw.onnx")
        _write_asset(config)

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("asset already present")

        async with _client(handler) as client:
            handle = await load_model_handle(
                config, session_factory=lambda p: fake_session(), http_client=client
            )
        assert handle.state is GateState.READY


# ─── Download ─────────────────────────────────────────────────────────────────


class TestEnsureModelAsset:
    @pytest.mark.asyncio
    async def test_downloads_missing_asset(self, tmp_path: Path) -> None:
        config = _config(tmp_path, url="https://models.example.org/nsfw.onnx")
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=b"downloaded-model")

        async with _client(handler) as client:
            path = await ensure_model_asset(config.model, http_client=client)

        assert requested == ["https://models.example.org/nsfw.onnx"]
        assert path.read_bytes() == b"downloaded-model"
        assert not path.with_name(path.name + ".part").exists()

    @pytest.mark.asyncio
    async def test_http_error_leaves_no_partial_file(self, tmp_path: Path) -> None:
        config = _config(tmp_path, url="https://models.example.org/missing.onnx")

        async with _client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(ModelLoadError, match="download failed"):
                await ensure_model_asset(config.model, http_client=client)

        path = Path(config.model.path)
        assert not path.exists()
        assert not path.with_name(path.name + ".part").exists()

    @pytest.mark.asyncio
    async def test_empty_download_is_rejected(self, tmp_path: Path) -> None:
        config = _config(tmp_path, url="https://models.example.org/empty.onnx")

        async with _client(lambda request: httpx.Response(200, content=b"")) as client:
            with pytest.raises(ModelLoadError, match="empty"):
                await ensure_model_asset(config.model, http_client=client)

        assert not Path(config.model.path).exists()

    @pytest.mark.asyncio
    async def test_missing_without_url(self, tmp_path: Path) -> None:
        with pytest.raises(ModelLoadError, match="no model.url"):
            await ensure_model_asset(_config(tmp_path).model)

    @pytest.mark.asyncio
    async def test_download_then_load_is_ready(
        self, tmp_path: Path, fake_session: Callable
    ) -> None:
        config = _config(tmp_path, url="https://models.example.org/nsfw.onnx")

        async with _client(lambda request: httpx.Response(200, content=b"model")) as client:
            handle = await load_model_handle(
                config, session_factory=lambda p: fake_session(), http_client=client
            )

        assert handle.state is GateState.READY
        assert Path(config.model.path).read_bytes() == b"model"

    @pytest.mark.asyncio
    async def test_download_failure_is_degraded(
        self, tmp_path: Path, fake_session: Callable
    ) -> None:
        config = _config(tmp_path, url="https://models.example.org/nsfw.onnx")

        async with _client(lambda request: httpx.Response(503)) as client:
            handle = await load_model_handle(
                config, session_factory=lambda p: fake_session(), http_client=client
            )

        assert handle.state is GateState.DEGRADED
