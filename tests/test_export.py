import io

from openpyxl import load_workbook

from relay.export import csv_to_workbook, export_filename, sheet_title


def test_rows_are_copied_into_the_sheet():
    content = csv_to_workbook("Region,Sales\nWest,10\nEast,\"1,200\"\n", "Sales by Region")

    ws = load_workbook(io.BytesIO(content)).active
    assert ws.title == "Sales by Region"
    assert [list(row) for row in ws.iter_rows(values_only=True)] == [
        ["Region", "Sales"],
        ["West", "10"],
        ["East", "1,200"],
    ]


def test_leading_bom_is_ignored():
    content = csv_to_workbook("\ufeffRegion\nWest\n")

    ws = load_workbook(io.BytesIO(content)).active
    assert ws["A1"].value == "Region"


def test_control_characters_are_dropped():
    content = csv_to_workbook("a,b\nx\x0by,2\n")

    ws = load_workbook(io.BytesIO(content)).active
    assert ws["A2"].value == "xy"
    assert ws["B2"].value == "2"


def test_empty_csv_gives_an_empty_sheet():
    ws = load_workbook(io.BytesIO(csv_to_workbook(""))).active

    assert ws.max_row == 1
    assert ws["A1"].value is None


def test_sheet_title_is_sanitized():
    assert sheet_title("Q1/Q2 [draft]: sales?") == "Q1_Q2 _draft__ sales_"
    assert len(sheet_title("x" * 50)) == 31
    assert sheet_title("") == "Sheet1"


def test_export_filename():
    assert export_filename("Sales Overview") == "Sales Overview.xlsx"
    assert export_filename("a/b:c") == "a_b_c.xlsx"
    assert export_filename("") == "export.xlsx"
