"""Local artifact store for issued-document PDFs.

An external harvesting process drops PDFs into one directory. It is not
consistent about zero padding (``Factura_de_deudores_14936.pdf`` and
``Factura_de_deudores_0014936.pdf`` both occur) nor about the naming
template, so lookups test every padding variant of every template.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import fitz

from core.config import DEFAULT_ARTIFACT_TEMPLATES
from core.models.documents import Artifact

logger = logging.getLogger(__name__)


class ArtifactUnreadableError(Exception):
    """The artifact exists but is not a readable PDF."""
    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


def candidate_names(
    document_number: str,
    templates: Sequence[str] = DEFAULT_ARTIFACT_TEMPLATES,
    max_padding: int = 5,
) -> List[str]:
    """All filenames that may hold the artifact for ``document_number``.

    Ordered by template, then by number of leading zeros (0..max_padding).
    """
    number = str(document_number).strip()
    names = []
    for template in templates:
        for zeros in range(max_padding + 1):
            names.append(template.format(number="0" * zeros + number))
    return names


class ArtifactStore:
    """Maps document numbers to cached PDF files.

    Usage:
        store = ArtifactStore("/data/pdfs")
        artifact = store.find("14936")
        if artifact:
            artifact = store.verify(artifact)
    """

    def __init__(
        self,
        base_path: Union[str, Path],
        templates: Sequence[str] = DEFAULT_ARTIFACT_TEMPLATES,
        max_padding: int = 5,
    ):
        """Initialize artifact store.

        Args:
            base_path: Directory the harvesting process writes into
            templates: Filename templates with a ``{number}`` placeholder
            max_padding: Maximum number of leading zeros to try
        """
        self.base_path = Path(base_path)
        self.templates = tuple(templates)
        self.max_padding = max_padding

    def _existing_names(self) -> Optional[set]:
        if not self.base_path.is_dir():
            return None
        return {p.name for p in self.base_path.iterdir() if p.is_file()}

    def find(self, document_number: str) -> Optional[Artifact]:
        """Look up the artifact for a document number.

        Returns None when no variant exists. That is the expected outcome
        for documents whose PDF has not been harvested yet.
        """
        number = str(document_number).strip()
        if not number.isdigit():
            return None

        existing = self._existing_names()
        if existing is None:
            logger.warning(f"Artifact directory does not exist: {self.base_path}")
            return None

        for name in candidate_names(number, self.templates, self.max_padding):
            if name in existing:
                path = self.base_path / name
                return Artifact(
                    document_number=number,
                    file_path=path,
                    size_bytes=path.stat().st_size,
                )
        return None

    def verify(self, artifact: Artifact) -> Artifact:
        """Open the PDF and return the artifact with its page count.

        Raises:
            ArtifactUnreadableError: Missing, empty, or not a PDF
        """
        path = artifact.file_path
        if not path.exists():
            raise ArtifactUnreadableError(f"Artifact vanished: {path.name}", path)
        if path.stat().st_size == 0:
            raise ArtifactUnreadableError(f"Artifact is empty: {path.name}", path)

        try:
            with fitz.open(path) as doc:
                if not doc.is_pdf:
                    raise ArtifactUnreadableError(f"Artifact is not a PDF: {path.name}", path)
                page_count = doc.page_count
        except ArtifactUnreadableError:
            raise
        except Exception as e:
            raise ArtifactUnreadableError(f"Cannot open {path.name}: {e}", path) from e

        if page_count == 0:
            raise ArtifactUnreadableError(f"Artifact has no pages: {path.name}", path)

        return artifact.model_copy(update={"page_count": page_count})

    def delete(self, artifact: Artifact) -> bool:
        """Remove a consumed artifact. Returns False if it was already gone."""
        try:
            artifact.file_path.unlink()
        except FileNotFoundError:
            logger.debug(f"Artifact already removed: {artifact.filename}")
            return False
        logger.info(f"Deleted artifact {artifact.filename}")
        return True

    def list_artifacts(self) -> List[Path]:
        """All PDF files currently in the store, oldest first."""
        if not self.base_path.is_dir():
            return []
        files = [p for p in self.base_path.iterdir() if p.is_file() and p.suffix.lower() == ".pdf"]
        return sorted(files, key=lambda p: p.stat().st_mtime)

    def matching(self, numbers: Iterable[str]) -> dict:
        """Map each document number to its artifact path, or None."""
        result = {}
        for number in numbers:
            artifact = self.find(number)
            result[number] = artifact.file_path if artifact else None
        return result
