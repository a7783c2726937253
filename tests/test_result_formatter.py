from types import SimpleNamespace

from services.result_formatter import extract_record_values, format_select_report

BOOKS = [SimpleNamespace(id="book-1", name="Household", currency="EUR")]
CATEGORIES = [SimpleNamespace(id="cat-1", name="Groceries", book_id="book-1")]


class TestInsertedValues:
    def test_expense_values_use_names(self):
        sql = (
            "INSERT INTO expenses (id, amount, date, description, category_id, payment_method, "
            "is_disabled, created_at) VALUES (UUID(), 300, '2024-05-01', 'Lunch', 'cat-1', 'Other', "
            "false, NOW())"
        )
        assert extract_record_values(sql, BOOKS, CATEGORIES) == (
            "amount: 300.00, date: 2024-05-01, description: Lunch, category: Groceries, "
            "payment_method: Other, is_disabled: false"
        )

    def test_category_values(self):
        sql = "INSERT INTO categories (id, name, book_id) VALUES (UUID(), 'C5', 'book-1')"
        assert extract_record_values(sql, BOOKS, CATEGORIES) == "name: C5, book: Household"

    def test_unparseable(self):
        assert extract_record_values("INSERT INTO", BOOKS, CATEGORIES) == ""


class TestSelectReport:
    def test_empty(self):
        assert format_select_report([], BOOKS, CATEGORIES) == "No records found"

    def test_expense_rows(self):
        rows = [{
            "id": "exp-1",
            "amount": 50,
            "date": "2024-05-01",
            "description": "Weekly groceries",
            "payment_method": "Cash",
            "category_id": "cat-1",
            "category_name": "Groceries",
            "book_name": "Household",
            "book_currency": "EUR",
        }]
        assert format_select_report(rows, BOOKS, CATEGORIES) == (
            "📊 Found 1 record:\n"
            '  1. €50.00 for "Weekly groceries" [Groceries] in Household via Cash on 2024-05-01'
        )

    def test_book_rows(self):
        rows = [
            {"id": "book-1", "name": "Household", "currency": "EUR", "user_id": "u"},
            {"id": "book-2", "name": "Trip", "currency": "USD", "user_id": "u"},
        ]
        assert format_select_report(rows, BOOKS, CATEGORIES) == (
            "📊 Found 2 records:\n"
            "  1. Book: Household with currency EUR\n"
            "  2. Book: Trip with currency USD"
        )

    def test_category_rows(self):
        rows = [{"id": "cat-1", "name": "Groceries", "book_id": "book-1", "is_disabled": 0}]
        assert format_select_report(rows, BOOKS, CATEGORIES) == (
            "📊 Found 1 record:\n  1. Category: Groceries in Household book"
        )

    def test_aggregate_rows_hide_ids(self):
        rows = [{"total": 123.456, "count": 3}]
        assert format_select_report(rows, BOOKS, CATEGORIES) == "📊 Found 1 record:\n  1. 123.46, 3"
