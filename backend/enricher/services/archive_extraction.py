"""Unpack uploaded archives and split blacklist files from reference files."""

from __future__ import annotations

import logging
import shutil
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from enricher.core.errors import PipelineError

logger = logging.getLogger(__name__)


@dataclass
class ExtractedFiles:
    reference_files: list[Path] = field(default_factory=list)
    blacklist_files: list[Path] = field(default_factory=list)
    extracted_dir: Path | None = None
    # Name reported for each path; staged plain uploads keep their original name
    display_names: dict[Path, str] = field(default_factory=dict)

    def display_name(self, path: Path) -> str:
        return self.display_names.get(path, path.name)


def _unique_target(directory: Path, name: str, taken: set[str]) -> Path:
    candidate = name
    stem, suffix = Path(name).stem, Path(name).suffix
    counter = 2
    while candidate.lower() in taken:
        candidate = f"{stem}_{counter}{suffix}"
        counter += 1
    taken.add(candidate.lower())
    return directory / candidate


def is_blacklist_file(file_name: str, prefix: str = "blacklist_mobile") -> bool:
    return Path(file_name).name.lower().startswith(prefix.lower())


def extract_and_separate(
    file_path: Path,
    file_name: str,
    *,
    blacklist_prefix: str = "blacklist_mobile",
) -> ExtractedFiles:
    """Return the CSV files of an upload, split into reference and blacklist files.

    ZIP archives are unpacked next to the upload; member directories are
    flattened and clashing names get a numeric suffix. Plain files are
    classified by the original upload name.
    """
    if not file_path.exists():
        raise PipelineError(f"Input file not found: {file_path}")

    if Path(file_name).suffix.lower() != ".zip" and not zipfile.is_zipfile(file_path):
        if is_blacklist_file(file_name, blacklist_prefix):
            return ExtractedFiles(blacklist_files=[file_path], display_names={file_path: Path(file_name).name})
        return ExtractedFiles(reference_files=[file_path], display_names={file_path: Path(file_name).name})

    logger.info(f"Extracting ZIP archive: {file_name}")
    # Keyed by the staged path, which is unique per upload
    extracted_dir = file_path.parent / f"{file_path.stem}_extracted"
    extracted_dir.mkdir(parents=True, exist_ok=True)
    result = ExtractedFiles(extracted_dir=extracted_dir)
    taken: set[str] = set()

    try:
        with zipfile.ZipFile(file_path) as archive:
            for member in archive.infolist():
                if member.is_dir():
                    continue
                member_path = PurePosixPath(member.filename)
                # Only the base name is kept, which also blocks ../ traversal
                name = member_path.name
                if not name.lower().endswith(".csv") or name.startswith(".") or "__MACOSX" in member_path.parts:
                    continue

                target = _unique_target(extracted_dir, name, taken)
                name = target.name
                with archive.open(member) as source, target.open("wb") as destination:
                    shutil.copyfileobj(source, destination)

                if is_blacklist_file(name, blacklist_prefix):
                    result.blacklist_files.append(target)
                    logger.info(f"Extracted blacklist file: {name}")
                else:
                    result.reference_files.append(target)
                    logger.info(f"Extracted reference file: {name}")
    except zipfile.BadZipFile as e:
        raise PipelineError(f"Invalid ZIP archive {file_name}: {e}") from e

    if not result.reference_files and not result.blacklist_files:
        raise PipelineError("No CSV files found in the archive")

    return result


def cleanup_extracted(extracted: ExtractedFiles) -> None:
    if extracted.extracted_dir is None:
        return
    shutil.rmtree(extracted.extracted_dir, ignore_errors=True)
