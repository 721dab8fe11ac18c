"""
Rendering Tests
===============

Invariantes testeadas:
1. Etiqueta "<clase> (<pct>%)" con dos decimales
2. El renderer dibuja sobre una copia (el frame original no cambia)
3. BufferSurface guarda la última imagen y la espeja
4. Snapshots se escriben en disco
"""
from unittest.mock import Mock

import cv2
import numpy as np
import pytest

from centinela.detection import Box, Detection, format_label
from centinela.visualization import (
    BufferSurface,
    OpenCVAnnotationRenderer,
    WindowSurface,
    save_snapshot,
)


def frame(width=320, height=240):
    return np.zeros((height, width, 3), dtype=np.uint8)


@pytest.mark.unit
class TestLabels:

    def test_format_label(self):
        assert format_label('dog', 0.8734) == 'dog (87.34%)'

    def test_format_label_rounds_two_decimals(self):
        assert format_label('person', 1.0) == 'person (100.00%)'
        assert format_label('cup', 0.5) == 'cup (50.00%)'

    def test_detection_label_text(self):
        detection = Detection('cat', 0.912345, Box(0, 0, 10, 10))
        assert detection.label_text == 'cat (91.23%)'


@pytest.mark.unit
class TestOpenCVAnnotationRenderer:

    def test_render_presents_annotated_copy(self):
        renderer = OpenCVAnnotationRenderer()
        surface = BufferSurface()
        original = frame()

        renderer.render([Detection('person', 0.9, Box(50, 60, 100, 80))], original, surface)

        assert surface.image is not None
        assert surface.image.shape == original.shape
        assert surface.image.any()
        assert not original.any()
        assert renderer.frames_rendered == 1

    def test_render_without_detections_or_stats_is_blank(self):
        renderer = OpenCVAnnotationRenderer(show_statistics=False)
        surface = BufferSurface()

        renderer.render([], frame(), surface)

        assert not surface.image.any()

    def test_box_near_top_edge(self):
        renderer = OpenCVAnnotationRenderer(show_statistics=False)
        surface = BufferSurface()

        renderer.render([Detection('person', 0.9, Box(0.4, 0.2, 50.5, 40.7))], frame(), surface)

        assert surface.image.any()

    def test_clear_resets_surface(self):
        renderer = OpenCVAnnotationRenderer()
        surface = BufferSurface()
        renderer.render([], frame(), surface)

        renderer.clear(surface)

        assert surface.image is None


@pytest.mark.unit
class TestSurfaces:

    def test_buffer_surface_mirror(self):
        mirror = Mock()
        surface = BufferSurface(mirror=mirror)
        image = frame()

        surface.present(image)
        surface.clear()

        mirror.present.assert_called_once_with(image)
        mirror.clear.assert_called_once_with()

    def test_window_surface_clear_before_present_is_noop(self, monkeypatch):
        destroy = Mock()
        monkeypatch.setattr(cv2, "destroyWindow", destroy)

        WindowSurface("test").clear()

        destroy.assert_not_called()

    def test_window_surface_present_and_clear(self, monkeypatch):
        imshow, wait_key, destroy = Mock(), Mock(), Mock()
        monkeypatch.setattr(cv2, "imshow", imshow)
        monkeypatch.setattr(cv2, "waitKey", wait_key)
        monkeypatch.setattr(cv2, "destroyWindow", destroy)
        surface = WindowSurface("Centinela")

        surface.present(frame())
        surface.clear()

        imshow.assert_called_once()
        wait_key.assert_called_once_with(1)
        destroy.assert_called_once_with("Centinela")


@pytest.mark.unit
class TestSnapshots:

    def test_save_snapshot_writes_jpeg(self, tmp_path):
        image = frame()
        image[10:20, 10:20] = 255

        path = save_snapshot(image, tmp_path / "snaps", prefix="capture")

        assert path.exists()
        assert path.parent == tmp_path / "snaps"
        assert path.name.startswith("capture-")
        assert path.suffix == ".jpg"
        assert cv2.imread(str(path)) is not None

    def test_save_snapshot_failure_raises(self, tmp_path, monkeypatch):
        monkeypatch.setattr(cv2, "imwrite", Mock(return_value=False))

        with pytest.raises(OSError):
            save_snapshot(frame(), tmp_path)
