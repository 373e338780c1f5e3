import io

import docx
import fitz
import pytest

from services.file_parser import MAX_PAGE_IMAGES, FileParseError, parse_file


def test_txt_is_decoded_and_cleaned():
    parsed = parse_file("notes.txt", "Title: X\n\n\n\nBody\x00 text".encode("utf-8"))

    assert parsed.name == "notes.txt"
    assert parsed.text == "Title: X\n\nBody text"
    assert parsed.images == []


def test_docx_paragraphs_are_joined():
    document = docx.Document()
    document.add_paragraph("Abstract")
    document.add_paragraph("We study things.")
    buffer = io.BytesIO()
    document.save(buffer)

    parsed = parse_file("paper.DOCX", buffer.getvalue())

    assert "Abstract" in parsed.text
    assert "We study things." in parsed.text


def test_pdf_text_and_page_images():
    doc = fitz.open()
    for i in range(MAX_PAGE_IMAGES + 2):
        page = doc.new_page()
        page.insert_text((72, 72), f"Page {i} of the paper")
    data = doc.tobytes()
    doc.close()

    parsed = parse_file("paper.pdf", data)

    assert "Page 0 of the paper" in parsed.text
    assert "Page 6 of the paper" in parsed.text
    assert len(parsed.images) == MAX_PAGE_IMAGES
    assert all(img.startswith("data:image/jpeg;base64,") for img in parsed.images)


def test_unsupported_extension():
    with pytest.raises(FileParseError, match="Unsupported file type"):
        parse_file("slides.pptx", b"whatever")


def test_corrupt_pdf_is_parse_error():
    with pytest.raises(FileParseError):
        parse_file("broken.pdf", b"%PDF-1.4 this is not really a pdf")
