"""
Tests for CSV and workbook reading.
"""

import io

import openpyxl
import pytest

from services.tabular_reader import (
    TabularReadError, read_csv_text, read_tabular_bytes, read_tabular_file
)


def workbook_bytes(rows):
    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    for row in rows:
        worksheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestReadCsv:
    """Test CSV parsing."""

    def test_headers_and_rows(self, takeoff_csv):
        headers, rows = read_csv_text(takeoff_csv)

        assert headers == ['DRAWINGS', 'TYPE', 'QTY', 'Cmdty Code', 'SIZE', 'AREA', 'Line Number']
        assert len(rows) == 4
        assert rows[1]['SIZE'] == '1/2"'
        assert rows[2]['SIZE'] == ''

    def test_byte_order_mark_stripped(self):
        headers, _ = read_csv_text('\ufeffDRAWING,TYPE\nP-1,Valve\n')
        assert headers == ['DRAWING', 'TYPE']

    def test_blank_lines_and_short_rows(self):
        headers, rows = read_csv_text('\nDRAWING,TYPE,QTY,\nP-1,Valve\n,,\n')

        assert headers == ['DRAWING', 'TYPE', 'QTY']
        assert rows == [{'DRAWING': 'P-1', 'TYPE': 'Valve', 'QTY': ''}]

    def test_repeated_header_keeps_first_column(self):
        _, rows = read_csv_text('QTY,QTY\n1,2\n')
        assert rows == [{'QTY': '1'}]

    def test_no_header(self):
        with pytest.raises(TabularReadError):
            read_csv_text('\n\n')


class TestReadTabularBytes:
    """Test dispatch by extension."""

    def test_csv(self, takeoff_csv):
        headers, rows = read_tabular_bytes('takeoff.CSV', takeoff_csv.encode('utf-8'))
        assert headers[0] == 'DRAWINGS'
        assert len(rows) == 4

    def test_latin1_csv(self):
        _, rows = read_tabular_bytes('takeoff.csv', 'DRAWING,DESCRIPTION\nP-1,Bride à collerette\n'.encode('latin-1'))
        assert rows[0]['DESCRIPTION'] == 'Bride à collerette'

    def test_xlsx(self):
        content = workbook_bytes([
            ['DRAWING', 'TYPE', 'QTY', 'CMDTY CODE'],
            ['P-001', 'Valve', 2, 'VB-01'],
            [None, None, None, None],
            ['P-002', 'Pipe', 3.0, 'PIPE-01'],
        ])

        headers, rows = read_tabular_bytes('takeoff.xlsx', content)

        assert headers == ['DRAWING', 'TYPE', 'QTY', 'CMDTY CODE']
        assert rows == [
            {'DRAWING': 'P-001', 'TYPE': 'Valve', 'QTY': '2', 'CMDTY CODE': 'VB-01'},
            {'DRAWING': 'P-002', 'TYPE': 'Pipe', 'QTY': '3', 'CMDTY CODE': 'PIPE-01'},
        ]

    def test_unsupported_extension(self):
        with pytest.raises(TabularReadError, match='Unsupported file type'):
            read_tabular_bytes('takeoff.pdf', b'%PDF')

    def test_empty_file(self):
        with pytest.raises(TabularReadError, match='empty'):
            read_tabular_bytes('takeoff.csv', b'')

    def test_corrupt_workbook(self):
        with pytest.raises(TabularReadError, match='Could not open workbook'):
            read_tabular_bytes('takeoff.xlsx', b'not a zip file')

    def test_read_from_disk(self, tmp_path, takeoff_csv):
        path = tmp_path / 'takeoff.csv'
        path.write_text(takeoff_csv, encoding='utf-8')

        headers, rows = read_tabular_file(path)

        assert 'Cmdty Code' in headers
        assert len(rows) == 4
