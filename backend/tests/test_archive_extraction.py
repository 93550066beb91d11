import zipfile

import pytest

from enricher.core.errors import PipelineError
from enricher.services.archive_extraction import cleanup_extracted, extract_and_separate, is_blacklist_file


def test_plain_files_are_classified_by_name(write_csv):
    reference = write_csv("clients.csv", ["a"])
    blacklist = write_csv("Blacklist_Mobile_2024.csv", ["0612345678"])

    assert extract_and_separate(reference, reference.name).reference_files == [reference]
    assert extract_and_separate(blacklist, blacklist.name).blacklist_files == [blacklist]


def test_zip_members_are_flattened_and_split(tmp_path):
    upload = tmp_path / "upload.zip"
    with zipfile.ZipFile(upload, "w") as archive:
        archive.writestr("nested/dir/clients.csv", "H1;12\n")
        archive.writestr("../../escape.csv", "H2;5\n")
        archive.writestr("blacklist_mobile_jan.csv", "0612345678\n")
        archive.writestr("__MACOSX/._clients.csv", "junk")
        archive.writestr("notes.txt", "ignored")

    extracted = extract_and_separate(upload, upload.name)

    assert sorted(path.name for path in extracted.reference_files) == ["clients.csv", "escape.csv"]
    assert [path.name for path in extracted.blacklist_files] == ["blacklist_mobile_jan.csv"]
    for path in extracted.reference_files + extracted.blacklist_files:
        assert path.parent == tmp_path / "upload_extracted"
    assert not (tmp_path.parent / "escape.csv").exists()

    cleanup_extracted(extracted)
    assert not (tmp_path / "upload_extracted").exists()


def test_zip_without_csv_is_rejected(tmp_path):
    upload = tmp_path / "empty.zip"
    with zipfile.ZipFile(upload, "w") as archive:
        archive.writestr("notes.txt", "nothing here")

    with pytest.raises(PipelineError, match="No CSV files"):
        extract_and_separate(upload, upload.name)


def test_corrupt_zip_is_rejected(tmp_path):
    upload = tmp_path / "broken.zip"
    upload.write_bytes(b"not a zip at all")

    with pytest.raises(PipelineError, match="Invalid ZIP"):
        extract_and_separate(upload, upload.name)


def test_missing_input(tmp_path):
    with pytest.raises(PipelineError, match="not found"):
        extract_and_separate(tmp_path / "nope.csv", "nope.csv")


def test_custom_blacklist_prefix():
    assert is_blacklist_file("optout_list.csv", "optout")
    assert not is_blacklist_file("clients.csv", "optout")


def test_plain_file_reports_the_original_name(tmp_path):
    staged = tmp_path / "3f2c9a.csv"
    staged.write_text("H1;12\n", encoding="utf-8")

    extracted = extract_and_separate(staged, "clients.csv")

    assert extracted.reference_files == [staged]
    assert extracted.display_name(staged) == "clients.csv"


def test_same_archive_name_extracts_to_separate_directories(tmp_path):
    uploads = []
    for staged_name, rows in (("aaa.zip", "H1;12\n"), ("bbb.zip", "H2;5\nH3;7\n")):
        upload = tmp_path / staged_name
        with zipfile.ZipFile(upload, "w") as archive:
            archive.writestr("clients.csv", rows)
        uploads.append(upload)

    first = extract_and_separate(uploads[0], "clients.zip")
    second = extract_and_separate(uploads[1], "clients.zip")
    assert first.extracted_dir != second.extracted_dir

    cleanup_extracted(second)

    assert first.reference_files[0].read_text(encoding="utf-8") == "H1;12\n"
    cleanup_extracted(first)


def test_clashing_member_names_are_kept_apart(tmp_path):
    upload = tmp_path / "months.zip"
    with zipfile.ZipFile(upload, "w") as archive:
        archive.writestr("jan/data.csv", "H1;12\n")
        archive.writestr("feb/data.csv", "H2;5\n")

    extracted = extract_and_separate(upload, upload.name)

    names = [path.name for path in extracted.reference_files]
    assert names == ["data.csv", "data_2.csv"]
    assert [path.read_text(encoding="utf-8") for path in extracted.reference_files] == ["H1;12\n", "H2;5\n"]
    cleanup_extracted(extracted)
