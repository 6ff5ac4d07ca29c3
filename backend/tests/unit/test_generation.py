# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
Generation tests.
Tests the image source (decode, optimisation, URL fetching via
httpx.MockTransport) and the PuzzleGenerator batch flow against an
InMemoryAssetGateway: success, partial/total failure, regeneration,
stale and orphaned asset cleanup.
"""

import cv2
import httpx
import numpy as np
import pytest

from app.api.middleware.error_handler import StorageError
from app.core.asset_gateway import InMemoryAssetGateway
from app.models.puzzle import Piece, Point, PuzzleDefinition


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _make_png(w: int = 800, h: int = 600, color=(40, 90, 160)) -> bytes:
    img = np.zeros((h, w, 3), dtype=np.uint8)
    img[:] = color
    ok, buf = cv2.imencode(".png", img)
    assert ok
    return buf.tobytes()


def _pts(*coords) -> list[Point]:
    return [Point(x=x, y=y) for x, y in coords]


def _square(x0: float, y0: float, size: float = 0.2) -> list[Point]:
    return _pts((x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size))


def _make_piece(piece_id: str, x0: float = 0.1, y0: float = 0.1, **kw) -> Piece:
    return Piece(id=piece_id, polygon_points=_square(x0, y0), **kw)


def _three_pieces() -> list[Piece]:
    return [
        _make_piece("a", 0.1, 0.1),
        _make_piece("b", 0.5, 0.1),
        _make_piece("c", 0.3, 0.6),
    ]


def _make_generator(gateway=None, **kw):
    from app.core.generator import PuzzleGenerator
    return PuzzleGenerator(gateway=gateway or InMemoryAssetGateway(), padding=2, **kw)


def _raster_size(gateway, url: str) -> tuple[int, int]:
    from app.utils.image_utils import probe_image_size
    return probe_image_size(gateway.read(url))


@pytest.fixture
def settings_env(monkeypatch):
    """Apply env overrides to Settings for one test, then restore the cache."""
    from app.config import get_settings

    def _apply(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()

    yield _apply
    monkeypatch.undo()
    get_settings.cache_clear()


# ─── Image Source ────────────────────────────────────────────────────────────

def test_decode_image_is_read_only():
    from app.core.image_source import decode_image
    image = decode_image(_make_png(64, 32))
    assert (image.width, image.height) == (64, 32)
    assert image.pixels.shape == (32, 64, 4)
    assert not image.pixels.flags.writeable


def test_prepare_source_downscales_to_webp():
    from app.core.image_source import prepare_source
    prepared = prepare_source(_make_png(4000, 1000))
    assert prepared.extension == "webp"
    assert prepared.content_type == "image/webp"
    assert (prepared.image.width, prepared.image.height) == (1920, 480)
    assert prepared.scale == pytest.approx(0.48)
    assert prepared.data[8:12] == b"WEBP"


def test_prepare_source_without_optimisation_keeps_png(settings_env):
    from app.core.image_source import prepare_source
    settings_env(OPTIMIZE_SOURCE_IMAGE="false")
    prepared = prepare_source(_make_png(300, 200))
    assert prepared.extension == "png"
    assert prepared.scale == 1.0
    assert (prepared.image.width, prepared.image.height) == (300, 200)


@pytest.mark.asyncio
async def test_image_loader_fetches_over_http():
    from app.core.image_source import ImageLoader

    png = _make_png(20, 10)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok.png":
            return httpx.Response(200, content=png)
        return httpx.Response(404)

    loader = ImageLoader(transport=httpx.MockTransport(handler), timeout=5)
    image = await loader.load("https://images.example.com/ok.png")
    assert (image.width, image.height) == (20, 10)
    assert await loader.probe_size("https://images.example.com/ok.png") == (20, 10)


@pytest.mark.asyncio
async def test_image_loader_maps_http_errors_to_decode_error():
    from app.api.middleware.error_handler import DecodeError
    from app.core.image_source import ImageLoader

    loader = ImageLoader(
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        timeout=5,
    )
    with pytest.raises(DecodeError):
        await loader.fetch_bytes("https://images.example.com/missing.png")
    with pytest.raises(DecodeError):
        await loader.fetch_bytes("")


@pytest.mark.asyncio
async def test_image_loader_reads_owned_urls_from_gateway():
    from app.api.middleware.error_handler import DecodeError
    from app.core.image_source import ImageLoader

    def _no_network(request):
        raise AssertionError("owned URLs must not hit the network")

    gw = InMemoryAssetGateway()
    url = gw.upload(_make_png(12, 8), "pz/source.png", "image/png")
    loader = ImageLoader(gateway=gw, transport=httpx.MockTransport(_no_network))

    image = await loader.load(url + "?v=123")
    assert (image.width, image.height) == (12, 8)
    with pytest.raises(DecodeError):
        await loader.fetch_bytes("memory://assets/puzzle-images/pz/gone.png")


@pytest.mark.asyncio
async def test_image_loader_accepts_raw_bytes():
    from app.core.image_source import ImageLoader
    image = await ImageLoader().load(_make_png(5, 7))
    assert (image.width, image.height) == (5, 7)


# ─── Create With New Image ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_single_piece_reference_scenario():
    from app.models.generation import GenerationOutcome, GenerationStage

    gw = InMemoryAssetGateway()
    gen = _make_generator(gw)
    result = await gen.create_with_new_image("pz", _make_png(), [_make_piece("p1")])

    assert result.outcome == GenerationOutcome.SUCCESS
    assert result.stage == GenerationStage.DONE
    assert (result.requested, result.succeeded) == (1, 1)

    d = result.definition
    assert (d.image_width, d.image_height) == (800, 600)
    assert d.image_url.startswith("memory://assets/puzzle-images/pz/source.webp?v=")

    piece = d.pieces[0]
    assert piece.image_url.startswith("memory://assets/puzzle-images/pz/p1.png?v=")
    assert piece.original_x == pytest.approx(0.0975)
    assert piece.original_y == pytest.approx(0.09667, abs=1e-5)
    assert _raster_size(gw, piece.image_url) == (164, 124)
    assert piece.polygon_points[0].x == pytest.approx(2 / 164)
    assert gw.content_type("pz/p1.png") == "image/png"
    result.raise_for_outcome()  # should not raise


@pytest.mark.asyncio
async def test_create_with_zero_pieces():
    from app.models.generation import GenerationOutcome

    gw = InMemoryAssetGateway()
    result = await _make_generator(gw).create_with_new_image("pz", _make_png(), [])

    assert result.outcome == GenerationOutcome.SUCCESS
    assert result.requested == 0
    assert result.definition.pieces == []
    assert result.definition.image_url
    assert gw.count() == 1


@pytest.mark.asyncio
async def test_create_keeps_piece_order_and_names():
    pieces = [_make_piece("x", name="Sky"), _make_piece("y", 0.5, 0.5)]
    result = await _make_generator().create_with_new_image("pz", _make_png(), pieces)
    assert [p.id for p in result.definition.pieces] == ["x", "y"]
    assert result.definition.pieces[0].name == "Sky"
    assert "name" not in result.to_response()["puzzle"]["pieces"][1]


@pytest.mark.asyncio
async def test_create_deletes_previous_source_image():
    gw = InMemoryAssetGateway()
    old_url = gw.upload(b"old", "pz/source.png", "image/png")

    result = await _make_generator(gw).create_with_new_image(
        "pz", _make_png(), [], previous=PuzzleDefinition(image_url=old_url + "?v=1")
    )

    with pytest.raises(StorageError):
        gw.read(old_url)
    assert gw.read(result.definition.image_url)


@pytest.mark.asyncio
async def test_create_recuts_materialized_pieces_against_previous():
    from app.models.generation import GenerationOutcome

    gw = InMemoryAssetGateway()
    gen = _make_generator(gw)
    first = await gen.create_with_new_image("pz", _make_png(), _three_pieces())

    second = await gen.create_with_new_image(
        "pz",
        _make_png(color=(0, 0, 255)),
        first.definition.pieces,
        previous=first.definition,
    )

    assert second.outcome == GenerationOutcome.SUCCESS
    for before, after in zip(first.definition.pieces, second.definition.pieces):
        assert after.original_x == pytest.approx(before.original_x)
        assert after.original_y == pytest.approx(before.original_y)
        assert _raster_size(gw, after.image_url) == _raster_size(gw, before.image_url)


@pytest.mark.asyncio
async def test_create_deletes_rasters_of_removed_pieces():
    gw = InMemoryAssetGateway()
    gen = _make_generator(gw)
    first = await gen.create_with_new_image("pz", _make_png(), _three_pieces())
    removed = first.definition.pieces[2]

    second = await gen.create_with_new_image(
        "pz",
        _make_png(color=(0, 0, 255)),
        first.definition.pieces[:2],
        previous=first.definition,
    )

    assert [p.id for p in second.definition.pieces] == ["a", "b"]
    with pytest.raises(StorageError):
        gw.read(removed.image_url)
    assert all(gw.read(p.image_url) for p in second.definition.pieces)


@pytest.mark.asyncio
async def test_create_materialized_piece_without_previous_fails_restore():
    from app.models.generation import GenerationOutcome, PieceFailureStage

    stored = _make_piece("m", image_url="memory://assets/puzzle-images/pz/m.png")
    result = await _make_generator().create_with_new_image(
        "pz", _make_png(), [_make_piece("a"), stored]
    )

    assert result.outcome == GenerationOutcome.PARTIAL_FAILURE
    assert result.failures[0].piece_id == "m"
    assert result.failures[0].stage == PieceFailureStage.RESTORE
    assert result.failures[0].error_type == "GeometryError"


# ─── Failures ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_invalid_polygon_fails_only_that_piece():
    from app.models.generation import GenerationOutcome, PieceFailureStage

    bowtie = Piece(id="bad", polygon_points=_pts((0.1, 0.1), (0.3, 0.3), (0.3, 0.1), (0.1, 0.3)))
    pieces = [_make_piece("a"), bowtie, _make_piece("c", 0.5, 0.5)]
    result = await _make_generator().create_with_new_image("pz", _make_png(), pieces)

    assert result.outcome == GenerationOutcome.PARTIAL_FAILURE
    assert (result.requested, result.succeeded) == (3, 2)
    failure = result.failures[0]
    assert failure.piece_id == "bad"
    assert failure.stage == PieceFailureStage.EXTRACTION
    assert failure.stale_anchor is True
    # Failed piece is returned unchanged
    assert result.definition.pieces[1] == bowtie
    assert [p.id for p in result.materialized_pieces] == ["a", "c"]


@pytest.mark.asyncio
async def test_every_piece_failing_is_total_failure():
    from app.api.middleware.error_handler import CountMismatchError, SurfaceError
    from app.models.generation import GenerationOutcome, GenerationStage

    def _broken_factory(width, height):
        raise SurfaceError("no canvas")

    gen = _make_generator(surface_factory=_broken_factory)
    result = await gen.create_with_new_image("pz", _make_png(), _three_pieces())

    assert result.outcome == GenerationOutcome.FAILURE
    assert result.stage == GenerationStage.FAILED
    assert result.succeeded == 0
    assert sorted(result.failed_piece_ids) == ["a", "b", "c"]
    with pytest.raises(CountMismatchError):
        result.raise_for_outcome()


@pytest.mark.asyncio
async def test_piece_upload_failure_is_reported():
    from app.models.generation import GenerationOutcome, PieceFailureStage

    class _FlakyGateway(InMemoryAssetGateway):
        def upload(self, data, logical_path, content_type):
            if logical_path.endswith("/b.png"):
                raise StorageError("bucket unavailable")
            return super().upload(data, logical_path, content_type)

    result = await _make_generator(_FlakyGateway()).create_with_new_image(
        "pz", _make_png(), _three_pieces()
    )

    assert result.outcome == GenerationOutcome.PARTIAL_FAILURE
    assert result.failures[0].piece_id == "b"
    assert result.failures[0].stage == PieceFailureStage.UPLOAD
    assert result.definition.pieces[1].image_url == ""


@pytest.mark.asyncio
async def test_undecodable_upload_raises():
    from app.api.middleware.error_handler import DecodeError
    with pytest.raises(DecodeError):
        await _make_generator().create_with_new_image("pz", b"garbage", [_make_piece("a")])


# ─── Regenerate From Existing ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_regenerate_is_idempotent():
    from app.core.generator import _unversioned
    from app.models.generation import GenerationOutcome

    gw = InMemoryAssetGateway()
    gen = _make_generator(gw)
    first = await gen.create_with_new_image("pz", _make_png(), _three_pieces())
    assets_before = gw.count()

    again = await gen.regenerate_from_existing("pz", first.definition)

    assert again.outcome == GenerationOutcome.SUCCESS
    assert gw.count() == assets_before
    assert again.definition.image_url == first.definition.image_url
    for before, after in zip(first.definition.pieces, again.definition.pieces):
        assert _unversioned(after.image_url) == _unversioned(before.image_url)
        assert after.original_x == pytest.approx(before.original_x)
        assert after.original_y == pytest.approx(before.original_y)
        for p, q in zip(before.polygon_points, after.polygon_points):
            assert q.x == pytest.approx(p.x, abs=1e-9)
            assert q.y == pytest.approx(p.y, abs=1e-9)


@pytest.mark.asyncio
async def test_regenerate_partial_failure_when_piece_image_is_gone():
    from app.models.generation import GenerationOutcome, PieceFailureStage

    gw = InMemoryAssetGateway()
    gen = _make_generator(gw)
    first = await gen.create_with_new_image("pz", _make_png(), _three_pieces())
    broken = first.definition.pieces[2]
    gw.delete(broken.image_url)

    result = await gen.regenerate_from_existing("pz", first.definition)

    assert result.outcome == GenerationOutcome.PARTIAL_FAILURE
    assert (result.requested, result.succeeded) == (3, 2)
    assert result.failed_piece_ids == ["c"]
    assert result.failures[0].stage == PieceFailureStage.RESTORE
    assert result.failures[0].stale_anchor is False
    assert result.definition.pieces[2] == broken
    assert all(p.image_url for p in result.materialized_pieces)


@pytest.mark.asyncio
async def test_regenerate_deletes_stale_and_orphaned_assets():
    from app.models.generation import GenerationOutcome

    gw = InMemoryAssetGateway()
    gen = _make_generator(gw)
    first = await gen.create_with_new_image("pz", _make_png(), _three_pieces())

    stale_url = gw.upload(b"old raster", "pz/a-old.png", "image/png")
    orphan_url = gw.upload(b"deleted piece", "pz/gone.png", "image/png")
    # Piece "a" was reshaped in the editor: back to the source frame
    reshaped = _make_piece("a", 0.2, 0.2)
    definition = first.definition.model_copy(
        update={"pieces": [reshaped, *first.definition.pieces[1:]]}
    )

    result = await gen.regenerate_from_existing(
        "pz", definition, {"a": stale_url, "gone": orphan_url}
    )

    assert result.outcome == GenerationOutcome.SUCCESS
    for url in (stale_url, orphan_url):
        with pytest.raises(StorageError):
            gw.read(url)
    assert result.definition.pieces[0].original_x == pytest.approx((160 - 2) / 800)


@pytest.mark.asyncio
async def test_regenerate_ignores_delete_failures():
    from app.models.generation import GenerationOutcome

    class _NoDeleteGateway(InMemoryAssetGateway):
        def delete(self, url):
            raise StorageError("delete not permitted")

    gw = _NoDeleteGateway()
    gen = _make_generator(gw)
    first = await gen.create_with_new_image("pz", _make_png(), _three_pieces())

    result = await gen.regenerate_from_existing(
        "pz", first.definition, {"gone": "memory://assets/puzzle-images/pz/gone.png"}
    )
    assert result.outcome == GenerationOutcome.SUCCESS


@pytest.mark.asyncio
async def test_regenerate_upload_failure_keeps_previous_raster():
    from app.models.generation import GenerationOutcome, PieceFailureStage

    class _SwitchableGateway(InMemoryAssetGateway):
        failing = False

        def upload(self, data, logical_path, content_type):
            if self.failing and logical_path.endswith("/b.png"):
                raise StorageError("bucket unavailable")
            return super().upload(data, logical_path, content_type)

    gw = _SwitchableGateway()
    gen = _make_generator(gw)
    first = await gen.create_with_new_image("pz", _make_png(), _three_pieces()[:2])
    kept = first.definition.pieces[1]

    gw.failing = True
    second = await gen.regenerate_from_existing("pz", first.definition)

    assert second.outcome == GenerationOutcome.PARTIAL_FAILURE
    assert second.failures[0].stage == PieceFailureStage.UPLOAD
    assert second.definition.pieces[1] == kept
    assert _raster_size(gw, kept.image_url) == (164, 124)

    gw.failing = False
    third = await gen.regenerate_from_existing("pz", second.definition)
    assert third.outcome == GenerationOutcome.SUCCESS
    assert third.definition.pieces[1].original_x == pytest.approx(kept.original_x)


@pytest.mark.asyncio
async def test_regenerate_zero_pieces_only_cleans_orphans():
    from app.models.generation import GenerationOutcome

    gw = InMemoryAssetGateway()
    orphan = gw.upload(b"x", "pz/gone.png", "image/png")
    definition = PuzzleDefinition(
        image_url="memory://assets/puzzle-images/pz/source.webp",
        image_width=800,
        image_height=600,
    )

    result = await _make_generator(gw).regenerate_from_existing(
        "pz", definition, {"gone": orphan}
    )
    assert result.outcome == GenerationOutcome.SUCCESS
    assert result.requested == 0
    assert gw.count() == 0


@pytest.mark.asyncio
async def test_regenerate_without_source_raises():
    from app.api.middleware.error_handler import DecodeError
    with pytest.raises(DecodeError):
        await _make_generator().regenerate_from_existing(
            "pz", PuzzleDefinition(pieces=[_make_piece("a")])
        )


@pytest.mark.asyncio
async def test_regenerate_fetches_external_source_over_http():
    from app.core.image_source import ImageLoader
    from app.models.generation import GenerationOutcome

    png = _make_png()
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=png))
    gw = InMemoryAssetGateway()
    gen = _make_generator(gw, loader=ImageLoader(gateway=gw, transport=transport))

    definition = PuzzleDefinition(
        image_url="https://images.example.com/puzzle.png",
        image_width=800,
        image_height=600,
        pieces=[_make_piece("p1")],
    )
    result = await gen.regenerate_from_existing("pz", definition)

    assert result.outcome == GenerationOutcome.SUCCESS
    assert _raster_size(gw, result.definition.pieces[0].image_url) == (164, 124)
