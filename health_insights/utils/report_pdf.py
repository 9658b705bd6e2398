from __future__ import annotations

import json
import re
from datetime import datetime
from io import BytesIO

import fitz

from health_insights.config.logger import get_logger
from health_insights.graph.state import CaseSnapshot, ReportStatus, SpecialistReport
from health_insights.prompts.prompts import format_history

logger = get_logger(__name__)

REPORT_TITLE = "Health Insights Report"

_TITLE_SIZE = 22
_SUBTITLE_SIZE = 10
_HEADING_SIZE = 14
_SUBHEADING_SIZE = 12
_BODY_SIZE = 10
_LINE_HEIGHT = 15
# A4 in points
_PAGE_WIDTH = 595
_PAGE_HEIGHT = 842
_MARGIN_X = 50
_MARGIN_TOP = 60
_MARGIN_BOTTOM = 60
_META_COLOR = (0.35, 0.35, 0.35)
_TEXT_COLOR = (0.1, 0.1, 0.1)
_ERROR_COLOR = (0.8, 0.2, 0.2)
_RULE_COLOR = (0.75, 0.75, 0.75)

_MD_EMPHASIS = re.compile(r"(\*\*|__|\*|`)")
_MD_BULLET = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+")


def report_filename(case_id: str) -> str:
    return f"Health_Insights_Report_{case_id}.pdf"


def _plain(text: str) -> str:
    return _MD_EMPHASIS.sub("", text or "").strip()


def markdown_blocks(markdown: str) -> list[tuple[str, str]]:
    """Flatten markdown into ("heading" | "bullet" | "text", content) blocks."""
    blocks: list[tuple[str, str]] = []
    paragraph: list[str] = []

    def flush() -> None:
        if paragraph:
            blocks.append(("text", " ".join(paragraph)))
            paragraph.clear()

    for line in (markdown or "").splitlines():
        stripped = line.strip()
        if not stripped or set(stripped) <= {"-", "*", "_"}:
            flush()
            continue
        if stripped.startswith("#"):
            flush()
            blocks.append(("heading", _plain(stripped.lstrip("#"))))
        elif _MD_BULLET.match(stripped):
            flush()
            blocks.append(("bullet", _plain(_MD_BULLET.sub("", stripped, count=1))))
        else:
            paragraph.append(_plain(stripped))
    flush()
    return blocks


def _pick_font(primary: str, fallback: str) -> str:
    try:
        fitz.get_text_length("Probe", fontname=primary, fontsize=_BODY_SIZE)
        return primary
    except Exception:
        return fallback


class _PdfWriter:
    """Top-to-bottom text layout that opens a new page when space runs out."""

    def __init__(self) -> None:
        self.doc = fitz.open()
        self.page = self.doc.new_page(width=_PAGE_WIDTH, height=_PAGE_HEIGHT)
        self.y = _MARGIN_TOP
        self.width = _PAGE_WIDTH - _MARGIN_X * 2
        self.bold = _pick_font("Times-Bold", "helv")
        self.body = _pick_font("Times-Roman", "helv")
        self.meta = _pick_font("Helvetica", self.body)

    def ensure_space(self, need: float) -> None:
        if self.y + need <= _PAGE_HEIGHT - _MARGIN_BOTTOM:
            return
        self.page = self.doc.new_page(width=_PAGE_WIDTH, height=_PAGE_HEIGHT)
        self.y = _MARGIN_TOP

    def wrap(self, text: str, fontsize: int, fontname: str, width: float) -> list[str]:
        """Break text into lines no wider than `width`, keeping explicit newlines."""
        lines: list[str] = []
        for paragraph in text.split("\n"):
            current = ""
            for word in paragraph.split():
                candidate = f"{current} {word}" if current else word
                if fitz.get_text_length(candidate, fontname=fontname, fontsize=fontsize) <= width:
                    current = candidate
                    continue
                if current:
                    lines.append(current)
                # A single word wider than the line is split by characters.
                current = ""
                for ch in word:
                    if current and fitz.get_text_length(current + ch, fontname=fontname, fontsize=fontsize) > width:
                        lines.append(current)
                        current = ""
                    current += ch
            lines.append(current)
        return lines

    def text(
        self,
        text: str,
        fontsize: int = _BODY_SIZE,
        fontname: str | None = None,
        indent: float = 0,
        color: tuple[float, float, float] = _TEXT_COLOR,
    ) -> None:
        if not text:
            return
        fontname = fontname or self.body
        line_height = max(fontsize * 1.4, _LINE_HEIGHT)
        for line in self.wrap(text, fontsize, fontname, self.width - indent):
            self.ensure_space(line_height)
            if line:
                self.page.insert_text(
                    fitz.Point(_MARGIN_X + indent, self.y + fontsize),
                    line,
                    fontsize=fontsize,
                    fontname=fontname,
                    color=color,
                )
            self.y += line_height
        self.y += 4

    def heading(self, text: str, size: int = _HEADING_SIZE, rule: bool = True) -> None:
        self.ensure_space(60)
        self.y += 6
        self.text(text, fontsize=size, fontname=self.bold)
        if rule:
            self.page.draw_line(
                fitz.Point(_MARGIN_X, self.y),
                fitz.Point(_PAGE_WIDTH - _MARGIN_X, self.y),
                color=_RULE_COLOR,
                width=0.6,
            )
            self.y += 6

    def bullets(self, items: list[str]) -> None:
        for item in items:
            self.text(f"- {item}", indent=8)

    def finish(self) -> bytes:
        for i, page in enumerate(self.doc, start=1):
            page.insert_textbox(
                fitz.Rect(_MARGIN_X, _PAGE_HEIGHT - 34, _PAGE_WIDTH - _MARGIN_X, _PAGE_HEIGHT - 18),
                f"Page {i} of {self.doc.page_count}",
                fontsize=9,
                fontname=self.meta,
                align=1,
                color=_META_COLOR,
            )
        buffer = BytesIO()
        self.doc.save(buffer)
        self.doc.close()
        return buffer.getvalue()


def _write_specialist(writer: _PdfWriter, report: SpecialistReport) -> None:
    writer.heading(report.specialty.value, size=_SUBHEADING_SIZE, rule=False)
    if report.status == ReportStatus.ERROR:
        writer.text(report.error or "Analysis failed.", color=_ERROR_COLOR)
        return
    analysis = report.analysis
    if report.status != ReportStatus.COMPLETE or analysis is None:
        writer.text("No analysis available.", color=_META_COLOR)
        return
    if analysis.summary:
        writer.text(f'"{analysis.summary}"', color=_META_COLOR)
    for label, items in (
        ("Key Findings", analysis.key_findings),
        ("Potential Conditions", analysis.potential_conditions),
        ("Recommendations", analysis.recommendations),
    ):
        if items:
            writer.text(label.upper(), fontsize=9, fontname=writer.bold)
            writer.bullets(items)


def build_report_pdf_bytes(snapshot: CaseSnapshot) -> bytes:
    writer = _PdfWriter()
    created_at = datetime.now().strftime("%Y-%m-%d %H:%M")

    writer.text(REPORT_TITLE, fontsize=_TITLE_SIZE, fontname=writer.bold)
    writer.y += 4
    writer.text(
        f"Generated at: {created_at}    Case ID: {snapshot.case_id or 'N/A'}",
        fontsize=_SUBTITLE_SIZE,
        fontname=writer.meta,
        color=_META_COLOR,
    )
    writer.page.draw_line(
        fitz.Point(_MARGIN_X, writer.y),
        fitz.Point(_PAGE_WIDTH - _MARGIN_X, writer.y),
        color=_RULE_COLOR,
        width=0.8,
    )
    writer.y += 10

    writer.heading("Patient History")
    for kind, content in markdown_blocks(format_history(snapshot.history)):
        writer.text(f"- {content}" if kind == "bullet" else content, indent=8 if kind == "bullet" else 0)

    writer.heading("Medical Report")
    writer.text(snapshot.report_text.strip() or "(image only)")
    if snapshot.image_mime_type:
        writer.text(f"Attached image: {snapshot.image_mime_type}", color=_META_COLOR)

    writer.heading("Consensus Report")
    for kind, content in markdown_blocks(snapshot.final_report.summary):
        if kind == "heading":
            writer.text(content, fontsize=_SUBHEADING_SIZE, fontname=writer.bold)
        elif kind == "bullet":
            writer.text(f"- {content}", indent=8)
        else:
            writer.text(content)

    writer.heading("Specialist Reports")
    for report in snapshot.specialists.values():
        _write_specialist(writer, report)

    pdf_bytes = writer.finish()
    logger.info(
        "[report_pdf] case=%s bytes=%s specialists=%s",
        snapshot.case_id,
        len(pdf_bytes),
        json.dumps({name: r.status.value for name, r in snapshot.specialists.items()}),
    )
    return pdf_bytes
