"""
Artifact Store and Retention Tests

Validates PDF lookup across zero-padding and naming variants, page-count
verification with PyMuPDF, deletion and the retention sweep.
"""

import os
import time

import fitz
import pytest

from core.storage import ArtifactStore, ArtifactUnreadableError, candidate_names
from delivery.retention import ArtifactRetention


def write_pdf(path, pages=1):
    doc = fitz.open()
    for i in range(pages):
        doc.new_page().insert_text((72, 72), f"Page {i + 1}")
    doc.save(str(path))
    doc.close()
    return path


class TestCandidateNames:

    def test_padding_variants_per_template(self):
        names = candidate_names("14936", ("Factura_de_deudores_{number}.pdf",), max_padding=2)
        assert names == [
            "Factura_de_deudores_14936.pdf",
            "Factura_de_deudores_014936.pdf",
            "Factura_de_deudores_0014936.pdf",
        ]

    def test_default_templates(self):
        names = candidate_names("14936")
        assert len(names) == 12
        assert names[0] == "Factura_de_deudores_14936.pdf"
        assert "Entrega_0000014936.pdf" in names


class TestFind:

    @pytest.mark.parametrize("zeros", [0, 1, 2, 3, 4, 5])
    def test_zero_padding(self, tmp_path, zeros):
        path = write_pdf(tmp_path / f"Factura_de_deudores_{'0' * zeros}14936.pdf")
        artifact = ArtifactStore(tmp_path).find("14936")
        assert artifact is not None
        assert artifact.file_path == path
        assert artifact.size_bytes == path.stat().st_size

    def test_padding_beyond_limit_ignored(self, tmp_path):
        write_pdf(tmp_path / "Factura_de_deudores_00000014936.pdf")
        assert ArtifactStore(tmp_path).find("14936") is None

    def test_alternate_template(self, tmp_path):
        path = write_pdf(tmp_path / "Entrega_9000123.pdf")
        assert ArtifactStore(tmp_path).find("9000123").file_path == path

    def test_no_false_matches(self, tmp_path):
        write_pdf(tmp_path / "Factura_de_deudores_14937.pdf")
        write_pdf(tmp_path / "Factura_de_deudores_149361.pdf")
        write_pdf(tmp_path / "Reporte_14936.pdf")
        assert ArtifactStore(tmp_path).find("14936") is None

    def test_unpadded_preferred(self, tmp_path):
        plain = write_pdf(tmp_path / "Factura_de_deudores_14936.pdf")
        write_pdf(tmp_path / "Factura_de_deudores_0014936.pdf")
        assert ArtifactStore(tmp_path).find("14936").file_path == plain

    def test_non_numeric_number(self, tmp_path):
        write_pdf(tmp_path / "Factura_de_deudores_ABC.pdf")
        assert ArtifactStore(tmp_path).find("ABC") is None

    def test_missing_directory(self, tmp_path):
        assert ArtifactStore(tmp_path / "nope").find("14936") is None

    def test_matching(self, tmp_path):
        path = write_pdf(tmp_path / "Factura_de_deudores_14936.pdf")
        result = ArtifactStore(tmp_path).matching(["14936", "14937"])
        assert result == {"14936": path, "14937": None}


class TestVerify:

    def test_page_count(self, tmp_path):
        write_pdf(tmp_path / "Factura_de_deudores_14936.pdf", pages=3)
        store = ArtifactStore(tmp_path)
        artifact = store.verify(store.find("14936"))
        assert artifact.page_count == 3

    def test_empty_file(self, tmp_path):
        (tmp_path / "Factura_de_deudores_14936.pdf").write_bytes(b"")
        store = ArtifactStore(tmp_path)
        with pytest.raises(ArtifactUnreadableError, match="empty"):
            store.verify(store.find("14936"))

    def test_vanished_file(self, tmp_path):
        path = write_pdf(tmp_path / "Factura_de_deudores_14936.pdf")
        store = ArtifactStore(tmp_path)
        artifact = store.find("14936")
        path.unlink()
        with pytest.raises(ArtifactUnreadableError):
            store.verify(artifact)

    def test_garbage_file(self, tmp_path):
        (tmp_path / "Factura_de_deudores_14936.pdf").write_bytes(b"<html>login expired</html>")
        store = ArtifactStore(tmp_path)
        with pytest.raises(ArtifactUnreadableError):
            store.verify(store.find("14936"))


class TestDelete:

    def test_delete_once(self, tmp_path):
        write_pdf(tmp_path / "Factura_de_deudores_14936.pdf")
        store = ArtifactStore(tmp_path)
        artifact = store.find("14936")
        assert store.delete(artifact) is True
        assert store.delete(artifact) is False
        assert store.find("14936") is None


class TestRetention:

    def test_sweep_removes_old_files_only(self, tmp_path):
        old = write_pdf(tmp_path / "Factura_de_deudores_100.pdf")
        fresh = write_pdf(tmp_path / "Factura_de_deudores_200.pdf")
        (tmp_path / "notes.txt").write_text("keep me")
        now = time.time()
        old_mtime = now - 31 * 86400
        os.utime(old, (old_mtime, old_mtime))

        retention = ArtifactRetention(ArtifactStore(tmp_path), retention_days=30, clock=lambda: now)
        result = retention.sweep()

        assert result.deleted == ["Factura_de_deudores_100.pdf"]
        assert result.deleted_count == 1
        assert result.bytes_freed > 0
        assert not old.exists()
        assert fresh.exists()
        assert (tmp_path / "notes.txt").exists()

    def test_sweep_empty_directory(self, tmp_path):
        result = ArtifactRetention(ArtifactStore(tmp_path / "missing")).sweep()
        assert result.deleted == []
        assert result.errors == []

    def test_invalid_window(self, tmp_path):
        with pytest.raises(ValueError):
            ArtifactRetention(ArtifactStore(tmp_path), retention_days=0)
