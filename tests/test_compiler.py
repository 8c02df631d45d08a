"""Integration tests for the compiler orchestrator."""

import numpy as np
import pytest

from target_compiler.records import GreyImage, RawImage


def make_solid_image(width: int = 64, height: int = 64, value: int = 128) -> RawImage:
    pixels = np.full((height, width, 4), value, dtype=np.uint8)
    pixels[:, :, 3] = 255
    return RawImage(width=width, height=height, pixels=pixels)


def make_textured_image(seed: int, width: int = 120, height: int = 100) -> RawImage:
    """Random 10px colour blocks."""
    rng = np.random.default_rng(seed)
    blocks = rng.integers(0, 256, size=(height // 10, width // 10, 3), dtype=np.uint8)
    pixels = np.kron(blocks, np.ones((10, 10, 1), dtype=np.uint8))
    return RawImage.from_array(pixels)


def make_grey(width: int, height: int) -> GreyImage:
    return GreyImage(width=width, height=height, data=np.zeros((height, width), dtype=np.uint8))


def make_compiler(avoid_worker: bool = True):
    from target_compiler.compiler import Compiler, CompilerConfig

    return Compiler(CompilerConfig(avoid_worker=avoid_worker, worker_timeout=120, verbose=False))


class TestCompile:
    """Tests for compile()."""

    def test_progress_non_decreasing_and_ends_at_100(self):
        compiler = make_compiler()
        values = []

        compiler.compile([make_textured_image(0), make_textured_image(1)], values.append)

        assert values[0] == 0.0
        assert values == sorted(values)
        assert values[-1] == 100.0
        assert 50.0 in values

    def test_output_matches_input_order(self):
        compiler = make_compiler()
        images = [
            make_textured_image(0, 120, 100),
            make_solid_image(64, 80),
            make_textured_image(2, 200, 150),
        ]

        targets = compiler.compile(images)

        assert len(targets) == 3
        assert [(t.image.width, t.image.height) for t in targets] == [(120, 100), (64, 80), (200, 150)]
        assert compiler.data is targets

    def test_solid_grey_scenario(self):
        """A flat 64x64 image gives empty keyframes for every pyramid level."""
        from target_compiler.pyramid import build_tracking_pyramid, matching_scales

        compiler = make_compiler()
        target = compiler.compile([make_solid_image()])[0]

        assert len(target.matching_data) == len(matching_scales(64, 64))
        for keyframe in target.matching_data:
            assert keyframe.maxima_points == []
            assert keyframe.minima_points == []
        assert [k.scale for k in target.matching_data] == matching_scales(64, 64)

        tracking_levels = build_tracking_pyramid(make_grey(64, 64))
        assert len(target.tracking_data) == len(tracking_levels)
        assert all(fs.points == [] for fs in target.tracking_data)

    def test_grey_pixels_discarded(self):
        compiler = make_compiler()
        target = compiler.compile([make_textured_image(3)])[0]

        assert target.image.data is None
        assert target.tracking_data[0].data is not None

    def test_empty_input(self):
        compiler = make_compiler()
        values = []

        assert compiler.compile([], values.append) == []
        assert values == [0.0, 100.0]
        assert compiler.data == []

    def test_invalid_image_keeps_previous_state(self):
        from target_compiler.errors import InvalidImage

        compiler = make_compiler()
        previous = compiler.compile([make_solid_image()])

        bad = RawImage(width=0, height=0, pixels=np.zeros((0, 0, 4), dtype=np.uint8))
        with pytest.raises(InvalidImage):
            compiler.compile([make_solid_image(), bad])

        assert compiler.data is previous

    def test_detector_failure_keeps_previous_state(self):
        from target_compiler.errors import DetectorFailure

        compiler = make_compiler()
        previous = compiler.compile([make_solid_image()])

        def broken_detector(level):
            raise RuntimeError("detector crashed")

        compiler.collaborators.detector = broken_detector
        with pytest.raises(DetectorFailure):
            compiler.compile([make_solid_image()])

        assert compiler.data is previous

    def test_extractor_failure_aborts_compile(self):
        from target_compiler.errors import ExtractorFailure

        compiler = make_compiler()

        def broken_extractor(level):
            raise RuntimeError("extractor crashed")

        compiler.collaborators.tracking_extractor = broken_extractor
        with pytest.raises(ExtractorFailure):
            compiler.compile([make_solid_image()])

        assert compiler.data is None

    def test_worker_and_in_process_agree(self):
        """Strategy choice does not change the compiled targets."""
        images = [make_textured_image(4), make_textured_image(5, 100, 140)]
        values = []

        in_process = make_compiler(avoid_worker=True).compile(images)
        delegated = make_compiler(avoid_worker=False).compile(images, values.append)

        assert delegated == in_process
        assert values == sorted(values)
        assert values[-1] == 100.0

    def test_stats_recorded(self):
        compiler = make_compiler()
        compiler.compile([make_solid_image()])

        stats = compiler.stats.to_dict()
        assert set(stats["phases"]) == {"matching", "tracking"}
        assert stats["total_duration_seconds"] >= 0


class TestExportImport:
    """Tests for export_data() / import_data()."""

    def test_export_before_compile(self):
        from target_compiler.errors import NotCompiled

        with pytest.raises(NotCompiled):
            make_compiler().export_data()

    def test_export_import_on_fresh_instance(self):
        compiler = make_compiler()
        targets = compiler.compile([make_textured_image(6), make_textured_image(7, 150, 110)])

        fresh = make_compiler()
        imported = fresh.import_data(compiler.export_data())

        assert imported == targets
        assert fresh.data == targets
        assert fresh.last_import_error is None

    def test_import_previous_version_keeps_state(self):
        """An outdated archive is refused without touching current targets."""
        from target_compiler.codec import CURRENT_VERSION, encode
        from target_compiler.errors import VersionMismatch

        compiler = make_compiler()
        current = compiler.compile([make_solid_image()])
        outdated = encode(current, version=CURRENT_VERSION - 1)

        result = compiler.import_data(outdated)

        assert result == []
        assert compiler.data is current
        assert isinstance(compiler.last_import_error, VersionMismatch)

    def test_import_previous_version_on_fresh_instance(self):
        from target_compiler.codec import CURRENT_VERSION, encode

        compiler = make_compiler()
        outdated = encode(compiler.compile([make_solid_image()]), version=CURRENT_VERSION - 1)

        fresh = make_compiler()

        assert fresh.import_data(outdated) == []
        assert fresh.data is None

    def test_custom_point_shape_survives_export_import(self):
        """Points from an injected extractor are archived as-is."""
        from target_compiler.compiler import Collaborators, Compiler, CompilerConfig

        collaborators = Collaborators(tracking_extractor=lambda level: [{"x": 1.0, "y": 2.0}])
        compiler = Compiler(CompilerConfig(avoid_worker=True, verbose=False), collaborators)
        targets = compiler.compile([make_textured_image(10)])

        imported = make_compiler().import_data(compiler.export_data())

        assert imported == targets
        assert imported[0].tracking_data[0].points == [{"x": 1.0, "y": 2.0}]

    def test_corrupt_archive_raises(self):
        from target_compiler.errors import ArchiveError

        compiler = make_compiler()

        with pytest.raises(ArchiveError):
            compiler.import_data(b"\x93\x01\x02")

    def test_save_and_load(self, tmp_path):
        compiler = make_compiler()
        targets = compiler.compile([make_textured_image(8)])

        path = compiler.save(tmp_path / "out" / "targets.mind")
        loaded = make_compiler().load(path)

        assert path.exists()
        assert loaded == targets


class TestCli:
    """Tests for the command-line interface."""

    def test_compile_and_info(self, tmp_path):
        from PIL import Image
        from typer.testing import CliRunner
        from target_compiler.compiler import app

        image_path = tmp_path / "poster.png"
        Image.fromarray(make_textured_image(9).pixels[:, :, :3]).save(image_path)
        output = tmp_path / "poster.mind"

        runner = CliRunner()
        result = runner.invoke(app, ["compile", str(image_path), "-o", str(output), "--no-worker"])

        assert result.exit_code == 0, result.output
        assert output.exists()

        result = runner.invoke(app, ["info", str(output)])

        assert result.exit_code == 0, result.output
        assert "Target 0" in result.output

    def test_compile_missing_image(self, tmp_path):
        from typer.testing import CliRunner
        from target_compiler.compiler import app

        result = CliRunner().invoke(app, ["compile", str(tmp_path / "missing.png")])

        assert result.exit_code == 1
