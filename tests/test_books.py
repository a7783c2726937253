from conftest import create_book, create_category, create_expense, signup


class TestBooks:
    async def test_create_upper_cases_currency(self, client, auth):
        book = await create_book(client, auth, currency="eur")
        assert book["currency"] == "EUR"
        assert book["is_archived"] is False

    async def test_invalid_currency(self, client, auth):
        res = await client.post("/books", json={"name": "Trip", "currency": "LB"}, headers=auth)
        assert res.status_code == 422

    async def test_name_length(self, client, auth):
        res = await client.post("/books", json={"name": "x" * 101}, headers=auth)
        assert res.status_code == 422

    async def test_duplicate_name_conflicts(self, client, auth):
        await create_book(client, auth)
        res = await client.post("/books", json={"name": "Household"}, headers=auth)
        assert res.status_code == 409
        assert res.json()["detail"] == "A book with this name already exists"

    async def test_same_name_for_different_users(self, client, auth):
        await create_book(client, auth)
        other = await signup(client, "bob@mail.com")
        await create_book(client, other)

    async def test_list_hides_archived_and_disabled(self, client, auth):
        book = await create_book(client, auth)
        archived = await create_book(client, auth, name="Old")
        category_id = await create_category(client, auth, book["id"])
        kept = await create_expense(client, auth, category_id, amount=10)
        hidden = await create_expense(client, auth, category_id, amount=99)
        await client.post(f"/expenses/{hidden['id']}/disable", headers=auth)
        await client.post(f"/books/{archived['id']}/archive", headers=auth)

        res = await client.get("/books", headers=auth)
        assert res.status_code == 200
        books = res.json()
        assert [b["name"] for b in books] == ["Household"]
        expenses = books[0]["categories"][0]["expenses"]
        assert [e["id"] for e in expenses] == [kept["id"]]

    async def test_get_book_summary(self, client, auth):
        book = await create_book(client, auth)
        food = await create_category(client, auth, book["id"], "Food")
        rent = await create_category(client, auth, book["id"], "Rent")
        await create_expense(client, auth, food, amount=20)
        await create_expense(client, auth, food, amount=5.5)
        await create_expense(client, auth, rent, amount=700)

        res = await client.get(f"/books/{book['id']}", headers=auth)
        assert res.status_code == 200
        summary = res.json()["summary"]
        assert summary == {
            "total_expenses": 725.5,
            "total_categories": 2,
            "total_expenses_count": 3,
        }
        assert [c["name"] for c in res.json()["book"]["categories"]] == ["Food", "Rent"]

    async def test_other_users_book_is_not_found(self, client, auth):
        book = await create_book(client, auth)
        other = await signup(client, "bob@mail.com")

        res = await client.get(f"/books/{book['id']}", headers=other)
        assert res.status_code == 404

        res = await client.post(f"/books/{book['id']}/archive", headers=other)
        assert res.status_code == 404

    async def test_update(self, client, auth):
        book = await create_book(client, auth)
        res = await client.put(
            f"/books/{book['id']}",
            json={"name": "Home", "description": "shared", "currency": "gbp"},
            headers=auth,
        )
        assert res.status_code == 200
        assert res.json()["name"] == "Home"
        assert res.json()["currency"] == "GBP"

    async def test_update_archived_book_is_refused(self, client, auth):
        book = await create_book(client, auth)
        await client.post(f"/books/{book['id']}/archive", headers=auth)

        res = await client.put(f"/books/{book['id']}", json={"name": "Home"}, headers=auth)
        assert res.status_code == 400
        assert res.json()["detail"] == "Cannot edit archived books. Restore the book first."

    async def test_archive_restore_cycle(self, client, auth):
        book = await create_book(client, auth)

        res = await client.post(f"/books/{book['id']}/archive", headers=auth)
        assert res.json()["message"] == "Book archived successfully"

        archived = await client.get("/books/archived", headers=auth)
        assert [b["id"] for b in archived.json()] == [book["id"]]
        assert (await client.get("/books", headers=auth)).json() == []

        res = await client.post(f"/books/{book['id']}/restore", headers=auth)
        assert res.json()["message"] == "Book restored successfully"
        assert (await client.get("/books/archived", headers=auth)).json() == []

    async def test_permanent_delete_needs_archived_book(self, client, auth):
        book = await create_book(client, auth)
        res = await client.delete(f"/books/{book['id']}", headers=auth)
        assert res.status_code == 400
        assert res.json()["detail"] == "Only archived books can be permanently deleted"

    async def test_permanent_delete_cascades(self, client, auth):
        book = await create_book(client, auth)
        category_id = await create_category(client, auth, book["id"])
        expense = await create_expense(client, auth, category_id)
        await client.post(f"/books/{book['id']}/archive", headers=auth)

        res = await client.delete(f"/books/{book['id']}", headers=auth)
        assert res.status_code == 200
        assert res.json()["message"] == "Book permanently deleted"

        res = await client.get(f"/expenses/{expense['id']}", headers=auth)
        assert res.status_code == 404
        res = await client.get(f"/categories/{category_id}", headers=auth)
        assert res.status_code == 404
