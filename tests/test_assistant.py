from langchain_core.language_models.fake_chat_models import FakeListChatModel

from conftest import create_book, create_category, create_expense
from main import app
from services.assistant import NO_OPERATION_WARNING
from services.chat_model import get_chat_model
from services.prompts import AUTH_REQUIRED_NOTICE
from services.rag_context import STARTER_TIPS


class BrokenChatModel(FakeListChatModel):
    def _call(self, *args, **kwargs):
        raise RuntimeError("provider down")


def sql_reply(sql: str) -> str:
    return f"Here you go:\n```sql\n{sql}\n```"


class TestStatus:
    async def test_status_for_anonymous(self, client):
        res = await client.get("/ai")
        assert res.status_code == 200
        body = res.json()
        assert body["status"] == "AI Assistant is ready"
        assert body["authenticated"] is False
        assert body["user_id"] is None

    async def test_status_for_user(self, client, auth):
        res = await client.get("/ai", headers=auth)
        assert res.json()["authenticated"] is True


class TestChat:
    async def test_empty_message(self, client, auth, llm_replies):
        llm_replies("unused")
        res = await client.post("/ai", json={"message": "   "}, headers=auth)
        assert res.status_code == 400
        assert res.json()["detail"] == "Message is required"

    async def test_anonymous_gets_general_answer(self, client, llm_replies):
        llm_replies("Track every expense, even small ones.")

        res = await client.post("/ai", json={"message": "How do I budget?"})
        assert res.status_code == 200
        body = res.json()
        assert body["response"] == "Track every expense, even small ones."
        assert body["requires_auth"] is True
        assert body["message"] == AUTH_REQUIRED_NOTICE

    async def test_insert_expense(self, client, auth, llm_replies):
        book = await create_book(client, auth)
        category_id = await create_category(client, auth, book["id"])
        llm_replies(sql_reply(
            "INSERT INTO expenses (id, amount, date, description, category_id) "
            f"VALUES (UUID(), 12.5, '2024-05-01', 'Milk', '{category_id}')"
        ))

        res = await client.post(
            "/ai", json={"message": "Add expense 12.5 for milk in Groceries"}, headers=auth
        )
        assert res.status_code == 200
        reply = res.json()["response"]
        assert reply.startswith("✅ Successfully added")
        assert "description: Milk" in reply
        assert "category: Groceries" in reply

        expenses = (await client.get("/expenses", headers=auth)).json()
        assert [e["description"] for e in expenses] == ["Milk"]
        assert expenses[0]["payment_method"] == "Other"

    async def test_insert_refused_is_reported(self, client, auth, llm_replies):
        await create_book(client, auth)
        llm_replies(sql_reply(
            "INSERT INTO expenses (amount, date, category_id) VALUES (5, '2024-05-01', 'nope')"
        ))

        res = await client.post("/ai", json={"message": "Add expense 5 for coffee"}, headers=auth)
        assert res.json()["response"] == "❌ Category not found or access denied"

    async def test_currency_mismatch(self, client, auth, llm_replies):
        book = await create_book(client, auth)
        category_id = await create_category(client, auth, book["id"])
        llm_replies(sql_reply(
            f"INSERT INTO expenses (amount, date, category_id) VALUES (20, CURDATE(), '{category_id}')"
        ))

        res = await client.post("/ai", json={"message": "Add expense €20 for lunch"}, headers=auth)
        assert res.json()["response"].startswith("⚠️ Currency mismatch!")

        expenses = (await client.get("/expenses", headers=auth)).json()
        assert expenses == []

    async def test_book_insert_with_existing_name(self, client, auth, llm_replies):
        await create_book(client, auth, name="Travel")
        llm_replies(sql_reply(
            "INSERT INTO books (id, name, currency) VALUES (UUID(), 'travel', 'USD')"
        ))

        res = await client.post("/ai", json={"message": "Create a book called travel"}, headers=auth)
        assert res.json()["response"] == "❌ Book already exists"

    async def test_update_disables_expense(self, client, auth, llm_replies):
        book = await create_book(client, auth)
        category_id = await create_category(client, auth, book["id"])
        expense = await create_expense(client, auth, category_id)
        llm_replies(sql_reply(
            f"UPDATE expenses SET is_disabled = true WHERE id = '{expense['id']}'"
        ))

        res = await client.post("/ai", json={"message": "Remove that expense"}, headers=auth)
        assert res.json()["response"] == "✅ Successfully updated 1 record(s)"

        expenses = (await client.get("/expenses", headers=auth)).json()
        assert expenses == []

    async def test_select_report(self, client, auth, llm_replies):
        book = await create_book(client, auth)
        category_id = await create_category(client, auth, book["id"])
        await create_expense(client, auth, category_id, amount=40, description="Shoes")
        llm_replies(sql_reply("SELECT * FROM expenses ORDER BY date DESC"))

        res = await client.post("/ai", json={"message": "Show me my expenses"}, headers=auth)
        reply = res.json()["response"]
        assert reply.startswith("📊 Found 1 record")
        assert "Shoes" in reply

    async def test_select_with_no_rows(self, client, auth, llm_replies):
        await create_book(client, auth)
        llm_replies(sql_reply("SELECT * FROM expenses"))

        res = await client.post("/ai", json={"message": "List my expenses"}, headers=auth)
        assert res.json()["response"] == "📊 Found 0 records"

    async def test_general_pass(self, client, auth, llm_replies):
        llm_replies("I can help with that.", "Try to review your biggest categories first.")

        res = await client.post("/ai", json={"message": "How can I save money?"}, headers=auth)
        body = res.json()
        assert body["response"] == "Try to review your biggest categories first."
        assert "rag_context" in body
        assert body["rag_context"]["user_context"]["books"] == 0
        assert body["rag_context"]["relevant_docs"][0]["id"] == "expenses-summary"

    async def test_success_claim_without_sql(self, client, auth, llm_replies):
        llm_replies("Sure.", "✅ Book created successfully!")

        res = await client.post("/ai", json={"message": "add a book for travel"}, headers=auth)
        assert res.json()["response"] == NO_OPERATION_WARNING

    async def test_exchange_is_saved(self, client, auth, llm_replies):
        llm_replies("Thinking.", "Spend less on takeout.")

        await client.post("/ai", json={"message": "Any advice?"}, headers=auth)

        history = (await client.get("/ai/history", headers=auth)).json()
        assert [(m["role"], m["content"]) for m in history] == [
            ("user", "Any advice?"),
            ("assistant", "Spend less on takeout."),
        ]

    async def test_provider_error(self, client, auth):
        app.dependency_overrides[get_chat_model] = lambda: BrokenChatModel(responses=["x"])
        try:
            res = await client.post("/ai", json={"message": "hello"}, headers=auth)
        finally:
            app.dependency_overrides.pop(get_chat_model, None)

        assert res.status_code == 502
        assert res.json()["detail"].startswith("AI provider error")


class TestStream:
    async def test_events(self, client, auth, llm_replies):
        llm_replies("Hello")

        res = await client.post("/ai/stream", json={"message": "hi"}, headers=auth)
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/event-stream")

        body = res.text
        assert '"type": "timing"' in body
        assert '"type": "content"' in body
        assert '"type": "done", "full_response": "Hello"' in body

        history = (await client.get("/ai/history", headers=auth)).json()
        assert [m["content"] for m in history] == ["hi", "Hello"]

    async def test_requires_login(self, client, llm_replies):
        llm_replies("Hello")
        res = await client.post("/ai/stream", json={"message": "hi"})
        assert res.status_code == 401


class TestHistory:
    async def test_add_and_clear(self, client, auth):
        res = await client.post("/ai/history", json={"role": "user", "content": "hi"}, headers=auth)
        assert res.status_code == 201
        assert res.json()["role"] == "user"

        history = (await client.get("/ai/history", headers=auth)).json()
        assert len(history) == 1

        res = await client.delete("/ai/history", headers=auth)
        assert res.json()["message"] == "Chat history cleared"
        assert (await client.get("/ai/history", headers=auth)).json() == []

    async def test_validation(self, client, auth):
        res = await client.post("/ai/history", json={"role": "user"}, headers=auth)
        assert res.status_code == 400
        assert res.json()["detail"] == "Role and content are required"

        res = await client.post("/ai/history", json={"role": "system", "content": "x"}, headers=auth)
        assert res.status_code == 400
        assert res.json()["detail"] == 'Role must be "user" or "assistant"'

    async def test_history_is_per_user(self, client, auth):
        from conftest import signup

        await client.post("/ai/history", json={"role": "user", "content": "mine"}, headers=auth)
        other = await signup(client, email="bob@mail.com")

        assert (await client.get("/ai/history", headers=other)).json() == []


class TestSuggestions:
    async def test_starter_tips(self, client, auth):
        res = await client.get("/ai/suggestions", headers=auth)
        assert res.json() == {"suggestions": STARTER_TIPS}

    async def test_tips_from_expenses(self, client, auth):
        book = await create_book(client, auth)
        category_id = await create_category(client, auth, book["id"], name="Rent")
        await create_expense(client, auth, category_id, amount=900)

        tips = (await client.get("/ai/suggestions", headers=auth)).json()["suggestions"]
        assert any('"Rent" at $900.00' in tip for tip in tips)
