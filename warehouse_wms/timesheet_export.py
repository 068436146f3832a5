"""Timesheet reports as spreadsheet (XLSX) or CSV files."""

from __future__ import annotations

import csv
import io
import math
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from xml.sax.saxutils import escape

from .errors import ExportError
from .timesheet_models import TimeEntry, Timesheet

_HEADERS = ("Date", "Clock In", "Clock Out", "Break (min)", "Hours", "Overtime", "Status")
_COLUMN_WIDTHS = (15, 12, 12, 10, 10, 12)
_DEFAULT_STYLE = 0
_HEADER_STYLE = 1
_HOURS_STYLE = 2

_MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
_REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
_PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
_CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"
_XML_DECL = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'

_CONTENT_TYPES = (
    f'{_XML_DECL}<Types xmlns="{_CT_NS}">'
    '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Override PartName="/xl/workbook.xml" '
    'ContentType="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet.main+xml"/>'
    '<Override PartName="/xl/worksheets/sheet1.xml" '
    'ContentType="application/vnd.openxmlformats-officedocument.spreadsheetml.worksheet+xml"/>'
    '<Override PartName="/xl/styles.xml" '
    'ContentType="application/vnd.openxmlformats-officedocument.spreadsheetml.styles+xml"/>'
    "</Types>"
)

_ROOT_RELS = (
    f'{_XML_DECL}<Relationships xmlns="{_PKG_REL_NS}">'
    f'<Relationship Id="rId1" Type="{_REL_NS}/officeDocument" Target="xl/workbook.xml"/>'
    "</Relationships>"
)

_WORKBOOK = (
    f'{_XML_DECL}<workbook xmlns="{_MAIN_NS}" xmlns:r="{_REL_NS}">'
    '<sheets><sheet name="Sheet1" sheetId="1" r:id="rId1"/></sheets>'
    "</workbook>"
)

_WORKBOOK_RELS = (
    f'{_XML_DECL}<Relationships xmlns="{_PKG_REL_NS}">'
    f'<Relationship Id="rId1" Type="{_REL_NS}/worksheet" Target="worksheets/sheet1.xml"/>'
    f'<Relationship Id="rId2" Type="{_REL_NS}/styles" Target="styles.xml"/>'
    "</Relationships>"
)

_THIN = '<color auto="1"/>'
_STYLES = (
    f'{_XML_DECL}<styleSheet xmlns="{_MAIN_NS}">'
    '<fonts count="2">'
    '<font><sz val="11"/><name val="Calibri"/></font>'
    '<font><b/><sz val="11"/><name val="Calibri"/></font>'
    "</fonts>"
    '<fills count="2">'
    '<fill><patternFill patternType="none"/></fill>'
    '<fill><patternFill patternType="gray125"/></fill>'
    "</fills>"
    '<borders count="2">'
    "<border><left/><right/><top/><bottom/><diagonal/></border>"
    f'<border><left style="thin">{_THIN}</left><right style="thin">{_THIN}</right>'
    f'<top style="thin">{_THIN}</top><bottom style="thin">{_THIN}</bottom><diagonal/></border>'
    "</borders>"
    '<cellStyleXfs count="1"><xf numFmtId="0" fontId="0" fillId="0" borderId="0"/></cellStyleXfs>'
    '<cellXfs count="3">'
    '<xf numFmtId="0" fontId="0" fillId="0" borderId="0" xfId="0"/>'
    '<xf numFmtId="0" fontId="1" fillId="0" borderId="1" xfId="0" '
    'applyFont="1" applyBorder="1" applyAlignment="1"><alignment horizontal="center"/></xf>'
    '<xf numFmtId="2" fontId="0" fillId="0" borderId="0" xfId="0" applyNumberFormat="1"/>'
    "</cellXfs>"
    '<cellStyles count="1"><cellStyle name="Normal" xfId="0" builtinId="0"/></cellStyles>'
    "</styleSheet>"
)


@dataclass
class TimesheetExport:
    """An exported report ready to hand to a client."""

    data: str
    content_type: str
    filename: str


def _clock(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%H:%M")


def _status_label(entry: TimeEntry) -> str:
    return entry.status.name.capitalize()


def _cell_ref(row: int, col: int) -> str:
    return f"{chr(ord('A') + col)}{row + 1}"


def _style_attr(style: int) -> str:
    return f' s="{style}"' if style else ""


class _Sheet:
    """Cells of a single worksheet, addressed by zero-based row and column."""

    def __init__(self) -> None:
        self._rows: dict[int, dict[int, str]] = {}

    def write_string(self, row: int, col: int, text: str, style: int = _DEFAULT_STYLE) -> None:
        body = f'<is><t xml:space="preserve">{escape(text)}</t></is>'
        self._rows.setdefault(row, {})[col] = (
            f'<c r="{_cell_ref(row, col)}"{_style_attr(style)} t="inlineStr">{body}</c>'
        )

    def write_number(self, row: int, col: int, value: float, style: int = _DEFAULT_STYLE) -> None:
        number = float(value)
        if not math.isfinite(number):
            raise ExportError(f"Failed to create Excel file: cannot store {value!r}")
        text = str(int(number)) if number.is_integer() else repr(number)
        self._rows.setdefault(row, {})[col] = (
            f'<c r="{_cell_ref(row, col)}"{_style_attr(style)}><v>{text}</v></c>'
        )

    def to_xml(self, widths: tuple[int, ...]) -> str:
        cols = "".join(
            f'<col min="{index + 1}" max="{index + 1}" width="{width}" customWidth="1"/>'
            for index, width in enumerate(widths)
        )
        rows = "".join(
            f'<row r="{row + 1}">' + "".join(cells[col] for col in sorted(cells)) + "</row>"
            for row, cells in sorted(self._rows.items())
        )
        return (
            f'{_XML_DECL}<worksheet xmlns="{_MAIN_NS}" xmlns:r="{_REL_NS}">'
            f"<cols>{cols}</cols><sheetData>{rows}</sheetData></worksheet>"
        )


def _fill_sheet(timesheet: Timesheet) -> _Sheet:
    sheet = _Sheet()
    sheet.write_string(0, 0, "Timesheet Report")
    sheet.write_string(1, 0, f"Employee: {timesheet.user_name}")
    sheet.write_string(
        2, 0,
        f"Period: {timesheet.start_date.isoformat()} to {timesheet.end_date.isoformat()}",
    )
    for col, header in enumerate(_HEADERS):
        sheet.write_string(4, col, header, _HEADER_STYLE)

    row = 5
    for entry in timesheet.entries:
        sheet.write_string(row, 0, entry.entry_date.isoformat())
        sheet.write_string(row, 1, _clock(entry.clock_in_time))
        if entry.clock_out_time is not None:
            sheet.write_string(row, 2, _clock(entry.clock_out_time))
        sheet.write_number(row, 3, entry.break_duration_minutes)
        if entry.total_hours is not None:
            sheet.write_number(row, 4, entry.total_hours, _HOURS_STYLE)
        sheet.write_number(row, 5, entry.overtime_hours, _HOURS_STYLE)
        sheet.write_string(row, 6, _status_label(entry))
        row += 1

    row += 2
    sheet.write_string(row, 0, "Summary")
    summary: list[tuple[str, float, Optional[int]]] = [
        ("Regular Hours:", timesheet.regular_hours, _HOURS_STYLE),
        ("Overtime Hours:", timesheet.overtime_hours, _HOURS_STYLE),
        ("Total Hours:", timesheet.total_hours, _HOURS_STYLE),
        ("Days Worked:", timesheet.days_worked, None),
    ]
    for label, value, style in summary:
        row += 1
        sheet.write_string(row, 0, label)
        sheet.write_number(row, 1, value, style or _DEFAULT_STYLE)
    return sheet


def export_xlsx(timesheet: Timesheet) -> bytes:
    """Render the timesheet as an XLSX workbook."""
    sheet_xml = _fill_sheet(timesheet).to_xml(_COLUMN_WIDTHS)
    parts = [
        ("[Content_Types].xml", _CONTENT_TYPES),
        ("_rels/.rels", _ROOT_RELS),
        ("xl/workbook.xml", _WORKBOOK),
        ("xl/_rels/workbook.xml.rels", _WORKBOOK_RELS),
        ("xl/styles.xml", _STYLES),
        ("xl/worksheets/sheet1.xml", sheet_xml),
    ]
    buffer = io.BytesIO()
    try:
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for name, content in parts:
                info = zipfile.ZipInfo(name, date_time=(1980, 1, 1, 0, 0, 0))
                info.compress_type = zipfile.ZIP_DEFLATED
                archive.writestr(info, content.encode("utf-8"))
    except (OSError, ValueError, zipfile.BadZipFile) as exc:
        raise ExportError(f"Failed to create Excel file: {exc}") from exc
    return buffer.getvalue()


def export_csv(timesheet: Timesheet) -> bytes:
    """Render the timesheet as UTF-8 CSV with a trailing summary block."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    try:
        writer.writerow(_HEADERS)
        for entry in timesheet.entries:
            clock_out = "" if entry.clock_out_time is None else _clock(entry.clock_out_time)
            hours = "" if entry.total_hours is None else f"{entry.total_hours:.2f}"
            writer.writerow([
                entry.entry_date.isoformat(),
                _clock(entry.clock_in_time),
                clock_out,
                str(entry.break_duration_minutes),
                hours,
                f"{entry.overtime_hours:.2f}",
                _status_label(entry),
            ])
        padding = [""] * 5
        writer.writerow([""] * 7)
        writer.writerow(["Summary", *[""] * 6])
        writer.writerow(["Regular Hours", f"{timesheet.regular_hours:.2f}", *padding])
        writer.writerow(["Overtime Hours", f"{timesheet.overtime_hours:.2f}", *padding])
        writer.writerow(["Total Hours", f"{timesheet.total_hours:.2f}", *padding])
        writer.writerow(["Days Worked", str(timesheet.days_worked), *padding])
    except csv.Error as exc:
        raise ExportError(f"CSV write error: {exc}") from exc
    return output.getvalue().encode("utf-8")