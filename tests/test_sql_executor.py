from datetime import date, timedelta

from sqlalchemy import select

from db.models import Book, Category, Expense, User
from services.rag_context import load_user_books, load_user_categories
from services.sql_executor import execute_insert, execute_select, execute_update


async def _seed(session):
    alice = User(email="alice@mail.com", password_hash="x")
    bob = User(email="bob@mail.com", password_hash="x")
    home = Book(name="Household", currency="USD", user=alice)
    theirs = Book(name="Bob's", currency="EUR", user=bob)
    food = Category(name="Food", book=home)
    bob_food = Category(name="Food", book=theirs)
    session.add_all([
        alice, bob, home, theirs, food, bob_food,
        Expense(amount=12, date=date(2024, 5, 1), description="Milk", category=food),
        Expense(amount=80, date=date(2024, 5, 2), description="Bob dinner", category=bob_food),
    ])
    await session.commit()
    return alice, bob, home, food, bob_food


async def _owned(session, user_id):
    books = await load_user_books(session, user_id)
    return books, await load_user_categories(session, books)


class TestInsert:
    async def test_book_insert_fills_owner_and_defaults(self, session):
        alice, *_ = await _seed(session)
        books, categories = await _owned(session, alice.id)

        result = await execute_insert(
            session,
            "INSERT INTO books (id, name, description, currency, is_archived, user_id, created_at, updated_at) "
            f"VALUES (UUID(), 'Trip', '', 'eur', true, '{alice.id}', NOW(), NOW())",
            alice.id, books, categories,
        )
        assert result == {"success": True, "message": "Successfully added"}

        book = (await session.execute(select(Book).where(Book.name == "Trip"))).scalar_one()
        assert book.currency == "EUR"
        assert book.is_archived is False
        assert book.user_id == alice.id

    async def test_duplicate_book(self, session):
        alice, *_ = await _seed(session)
        books, categories = await _owned(session, alice.id)

        result = await execute_insert(
            session,
            "INSERT INTO books (id, name, currency) VALUES (UUID(), 'household', 'USD')",
            alice.id, books, categories,
        )
        assert result["success"] is False
        assert result["error"] == "Book already exists"

    async def test_book_for_someone_else(self, session):
        alice, bob, *_ = await _seed(session)
        books, categories = await _owned(session, alice.id)

        result = await execute_insert(
            session,
            f"INSERT INTO books (name, currency, user_id) VALUES ('Sneaky', 'USD', '{bob.id}')",
            alice.id, books, categories,
        )
        assert result["success"] is False
        assert result["message"] == "Failed to execute INSERT query"

    async def test_expense_defaults(self, session):
        alice, _, _, food, _ = await _seed(session)
        books, categories = await _owned(session, alice.id)

        result = await execute_insert(
            session,
            "INSERT INTO expenses (id, amount, date, category_id) "
            f"VALUES (UUID(), 9.99, CURDATE(), '{food.id}')",
            alice.id, books, categories,
        )
        assert result["success"] is True

        expense = (await session.execute(select(Expense).where(Expense.amount == 9.99))).scalar_one()
        assert expense.payment_method == "Other"
        assert expense.description == ""
        assert expense.date <= date.today() + timedelta(days=1)

    async def test_expense_in_foreign_category(self, session):
        alice, _, _, _, bob_food = await _seed(session)
        books, categories = await _owned(session, alice.id)

        result = await execute_insert(
            session,
            f"INSERT INTO expenses (amount, date, category_id) VALUES (5, '2024-05-01', '{bob_food.id}')",
            alice.id, books, categories,
        )
        assert result["error"] == "Category not found or access denied"

    async def test_expense_value_checks(self, session):
        alice, _, _, food, _ = await _seed(session)
        books, categories = await _owned(session, alice.id)

        negative = await execute_insert(
            session,
            f"INSERT INTO expenses (amount, date, category_id) VALUES (-5, '2024-05-01', '{food.id}')",
            alice.id, books, categories,
        )
        assert negative["error"] == "Amount must be positive"

        method = await execute_insert(
            session,
            "INSERT INTO expenses (amount, date, category_id, payment_method) "
            f"VALUES (5, '2024-05-01', '{food.id}', 'Bitcoin')",
            alice.id, books, categories,
        )
        assert method["error"].startswith("Invalid payment method: Bitcoin")

    async def test_category_needs_own_book(self, session):
        alice, *_ = await _seed(session)
        books, categories = await _owned(session, alice.id)

        result = await execute_insert(
            session,
            "INSERT INTO categories (id, name, book_id) VALUES (UUID(), 'Rent', 'not-a-book')",
            alice.id, books, categories,
        )
        assert result["error"] == "Book not found or access denied"

    async def test_other_tables_refused(self, session):
        alice, *_ = await _seed(session)
        result = await execute_insert(
            session,
            "INSERT INTO users (email) VALUES ('x@mail.com')",
            alice.id, [], [],
        )
        assert result["success"] is False


class TestUpdate:
    async def test_disable_by_id(self, session):
        alice, _, _, food, _ = await _seed(session)
        expense = (await session.execute(select(Expense).where(Expense.description == "Milk"))).scalar_one()

        result = await execute_update(
            session, f"UPDATE expenses SET is_disabled = true WHERE id = '{expense.id}'", alice.id
        )
        assert result["message"] == "Successfully updated 1 record(s)"
        await session.refresh(expense)
        assert expense.is_disabled is True

    async def test_other_users_row_is_untouched(self, session):
        alice, *_ = await _seed(session)
        expense = (await session.execute(select(Expense).where(Expense.description == "Bob dinner"))).scalar_one()

        result = await execute_update(
            session, f"UPDATE expenses SET is_disabled = true WHERE id = '{expense.id}'", alice.id
        )
        assert result["affected_rows"] == 0
        await session.refresh(expense)
        assert expense.is_disabled is False

    async def test_latest_when_no_id(self, session):
        alice, _, home, *_ = await _seed(session)

        result = await execute_update(session, "UPDATE books SET is_archived = true", alice.id)
        assert result["affected_rows"] == 1
        await session.refresh(home)
        assert home.is_archived is True

    async def test_delete_is_refused(self, session):
        alice, *_ = await _seed(session)
        result = await execute_update(session, "DELETE FROM expenses", alice.id)
        assert result["success"] is False


class TestSelect:
    async def test_unscoped_query_only_sees_own_rows(self, session):
        alice, *_ = await _seed(session)

        result = await execute_select(session, "SELECT amount, date FROM expenses", alice.id)
        assert result["success"] is True
        assert result["row_count"] == 1
        assert result["data"][0]["amount"] == 12
        assert result["data"][0]["book_currency"] == "USD"

    async def test_joined_star_select(self, session):
        alice, *_ = await _seed(session)

        result = await execute_select(
            session,
            "SELECT * FROM expenses e JOIN categories c ON e.category_id = c.id "
            f"JOIN books b ON c.book_id = b.id WHERE b.user_id = '{alice.id}' ORDER BY e.date DESC LIMIT 10",
            alice.id,
        )
        assert result["row_count"] == 1
        assert result["data"][0]["description"] == "Milk"

    async def test_users_table_is_refused(self, session):
        alice, *_ = await _seed(session)
        result = await execute_select(session, "SELECT email FROM users", alice.id)
        assert result["success"] is False

    async def test_literals_with_colons(self, session):
        alice, *_ = await _seed(session)
        result = await execute_select(
            session, "SELECT * FROM books WHERE description = '10:30'", alice.id
        )
        assert result == {"success": True, "data": [], "row_count": 0}

    async def test_comma_join_cannot_read_users(self, session):
        alice, *_ = await _seed(session)
        result = await execute_select(
            session,
            f"SELECT u.email, u.password_hash FROM books b, users u WHERE b.user_id = '{alice.id}'",
            alice.id,
        )
        assert result["success"] is False
        assert "Comma separated" in result["error"]

    async def test_constant_join_only_sees_own_expenses(self, session):
        alice, *_ = await _seed(session)
        result = await execute_select(
            session,
            "SELECT e.description FROM expenses e JOIN categories c ON e.category_id = c.id "
            f"JOIN books b ON b.user_id = '{alice.id}'",
            alice.id,
        )
        assert result["success"] is True
        assert [row["description"] for row in result["data"]] == ["Milk"]

    async def test_or_cannot_widen_the_filter(self, session):
        alice, *_ = await _seed(session)
        result = await execute_select(
            session,
            "SELECT e.description FROM expenses e WHERE e.amount > 0 OR 1 = 1",
            alice.id,
        )
        assert [row["description"] for row in result["data"]] == ["Milk"]


class TestFutureDates:
    async def test_assistant_and_forms_share_the_cutoff(self, session, monkeypatch):
        import services.reports

        monkeypatch.setattr(services.reports, "utc_today", lambda: date(2024, 5, 1))
        alice, _, _, food, _ = await _seed(session)
        books, categories = await _owned(session, alice.id)

        tomorrow = await execute_insert(
            session,
            f"INSERT INTO expenses (amount, date, category_id) VALUES (5, '2024-05-02', '{food.id}')",
            alice.id, books, categories,
        )
        assert tomorrow["error"] == "Expense date cannot be in the future"

        today = await execute_insert(
            session,
            f"INSERT INTO expenses (amount, date, category_id) VALUES (5, '2024-05-01', '{food.id}')",
            alice.id, books, categories,
        )
        assert today["success"] is True
