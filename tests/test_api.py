"""End-to-end tests for the banking HTTP API."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from bankapi.api import create_app
from bankapi.config import Settings
from bankapi.database import MAX_BALANCE, Database
from bankapi.passwords import PasswordHasher
from conftest import FakeClock

ADMIN_EMAIL = "admins@example.com"
ADMIN_PASSWORD = "123456"


class BankingAPITests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tempdir.name) / "bank.sqlite3"
        self.settings = Settings(database_path=db_path, password_rounds=1000, token_secret="tests-secret")
        self.database = Database(db_path)
        self.database.initialize()
        hasher = PasswordHasher(rounds=1000)
        self.database.create_user("Admin", ADMIN_EMAIL, hasher.hash(ADMIN_PASSWORD))
        self.clock = FakeClock()
        self.app = create_app(settings=self.settings, database=self.database, clock=self.clock)
        self.client = TestClient(self.app)
        self.headers = self._admin_headers()

    def tearDown(self) -> None:
        self.client.close()
        self._tempdir.cleanup()

    def _admin_headers(self) -> dict:
        response = self.client.post(
            "/authentication/login/users",
            json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def _create_account(self, name: str, email: str, nominal: int = 50_000) -> dict:
        response = self.client.post(
            "/banks/createAcc",
            headers=self.headers,
            json={
                "name": name,
                "email": email,
                "password": "secret1",
                "password_confirm": "secret1",
                "nominal": nominal,
            },
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json(), {"name": name, "email": email})
        account = self.database.get_account_by_email(email)
        assert account is not None
        return {"id": account.id, "account_number": account.account_number}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def test_login_returns_session_and_token(self) -> None:
        response = self.client.post(
            "/authentication/login/users",
            json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["email"], ADMIN_EMAIL)
        self.assertEqual(payload["name"], "Admin")
        self.assertTrue(payload["user_id"])
        self.assertTrue(payload["token"])

    def test_login_rate_limit_and_window(self) -> None:
        for attempt in range(1, 6):
            response = self.client.post(
                "/authentication/login/users",
                json={"email": ADMIN_EMAIL, "password": "wrong"},
            )
            self.assertEqual(response.status_code, 401)
            detail = response.json()["detail"]
            self.assertEqual(detail["code"], "INVALID_CREDENTIALS")
            self.assertEqual(detail["attempts"], attempt)
        self.assertTrue(detail["locked"])

        blocked = self.client.post(
            "/authentication/login/users",
            json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        )
        self.assertEqual(blocked.status_code, 403)
        detail = blocked.json()["detail"]
        self.assertEqual(detail["code"], "RATE_LIMIT_EXCEEDED")
        self.assertIn("try again in 30 minutes", detail["message"])
        self.assertEqual(detail["retry_after_seconds"], 1800)

        self.clock.advance(minutes=31)
        recovered = self.client.post(
            "/authentication/login/users",
            json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        )
        self.assertEqual(recovered.status_code, 200)

    def test_login_validates_body(self) -> None:
        response = self.client.post("/authentication/login/users", json={"email": "not-an-email", "password": "x"})
        self.assertEqual(response.status_code, 422)

    def test_banking_routes_require_token(self) -> None:
        self.assertEqual(self.client.get("/banks/check").status_code, 401)
        self.assertEqual(
            self.client.get("/banks/check", headers={"Authorization": "Bearer invalid"}).status_code,
            403,
        )
        self.assertEqual(self.client.get("/users").status_code, 401)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def test_create_account_failures(self) -> None:
        base = {"name": "Saver", "email": "saver@example.com", "password": "secret1"}

        mismatch = self.client.post(
            "/banks/createAcc",
            headers=self.headers,
            json={**base, "password_confirm": "other", "nominal": 50_000},
        )
        self.assertEqual(mismatch.status_code, 400)
        self.assertEqual(mismatch.json()["detail"]["code"], "PASSWORD_MISMATCH")

        too_small = self.client.post(
            "/banks/createAcc",
            headers=self.headers,
            json={**base, "password_confirm": "secret1", "nominal": 49_999},
        )
        self.assertEqual(too_small.status_code, 422)
        self.assertEqual(too_small.json()["detail"]["code"], "MINIMUM_DEPOSIT_NOT_MET")

        self._create_account("Saver", "saver@example.com")
        taken = self.client.post(
            "/banks/createAcc",
            headers=self.headers,
            json={**base, "password_confirm": "secret1", "nominal": 50_000},
        )
        self.assertEqual(taken.status_code, 409)
        self.assertEqual(taken.json()["detail"]["code"], "EMAIL_ALREADY_TAKEN")

    def test_list_and_read_accounts(self) -> None:
        account = self._create_account("Saver", "saver@example.com")

        listing = self.client.get("/banks/check", headers=self.headers)
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(
            listing.json(),
            [
                {
                    "id": account["id"],
                    "account_number": account["account_number"],
                    "name": "Saver",
                    "email": "saver@example.com",
                }
            ],
        )

        detail = self.client.get(f"/banks/login/{account['id']}", headers=self.headers)
        self.assertEqual(detail.status_code, 200)
        self.assertIn("/withdraw", detail.json()["menu"])

        info = self.client.get(f"/banks/login/{account['id']}/info", headers=self.headers)
        self.assertEqual(info.status_code, 200)
        self.assertEqual(info.json()["balance"], 50_000)

        missing = self.client.get("/banks/login/unknown", headers=self.headers)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["detail"]["code"], "ACCOUNT_NOT_FOUND")

    def test_bank_login_is_public_and_blocks_after_three_failures(self) -> None:
        account = self._create_account("Saver", "saver@example.com")

        ok = self.client.post("/banks/login", json={"email": "saver@example.com", "password": "secret1"})
        self.assertEqual(ok.status_code, 200, ok.text)
        self.assertEqual(ok.json()["account_number"], account["account_number"])

        account_headers = {"Authorization": f"Bearer {ok.json()['token']}"}
        self.assertEqual(
            self.client.get(f"/banks/login/{account['id']}/info", headers=account_headers).status_code,
            200,
        )

        for _ in range(3):
            failed = self.client.post("/banks/login", json={"email": "saver@example.com", "password": "nope"})
            self.assertEqual(failed.status_code, 401)

        blocked = self.client.post("/banks/login", json={"email": "saver@example.com", "password": "secret1"})
        self.assertEqual(blocked.status_code, 403)
        self.assertIn("has been blocked", blocked.json()["detail"]["message"])
        self.assertIsNone(blocked.json()["detail"]["retry_after_seconds"])

    def test_limiters_are_separate_per_login_surface(self) -> None:
        self._create_account("Saver", ADMIN_EMAIL)
        for _ in range(3):
            self.client.post("/banks/login", json={"email": ADMIN_EMAIL, "password": "nope"})

        response = self.client.post(
            "/authentication/login/users",
            json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        )
        self.assertEqual(response.status_code, 200)

    def test_withdraw_and_deposit(self) -> None:
        account = self._create_account("Saver", "saver@example.com")
        url = f"/banks/login/{account['id']}"

        withdraw = self.client.put(f"{url}/withdraw", headers=self.headers, json={"nominalTarik": 20_000})
        self.assertEqual(withdraw.status_code, 200, withdraw.text)
        self.assertEqual(withdraw.json()["balance"], 30_000)

        refused = self.client.put(f"{url}/withdraw", headers=self.headers, json={"nominalTarik": 40_000})
        self.assertEqual(refused.status_code, 422)
        self.assertEqual(refused.json()["detail"]["code"], "INSUFFICIENT_FUNDS")

        deposit = self.client.put(f"{url}/deposit", headers=self.headers, json={"nominalSetor": "5000"})
        self.assertEqual(deposit.status_code, 200, deposit.text)
        self.assertEqual(deposit.json()["balance"], 35_000)

        negative = self.client.put(f"{url}/deposit", headers=self.headers, json={"nominalSetor": -5})
        self.assertEqual(negative.status_code, 422)
        self.assertEqual(self.database.get_account(account["id"]).balance, 35_000)

    def test_transfer(self) -> None:
        source = self._create_account("Sender", "from@example.com")
        destination = self._create_account("Receiver", "to@example.com")
        self.client.put(f"/banks/login/{source['id']}/withdraw", headers=self.headers, json={"nominalTarik": 20_000})
        self.client.put(
            f"/banks/login/{destination['id']}/withdraw",
            headers=self.headers,
            json={"nominalTarik": 45_000},
        )

        response = self.client.post(
            f"/banks/login/{source['id']}/transfer",
            headers=self.headers,
            json={"toId": destination["id"], "nominalTransfer": 10_000, "description": "rent"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["message"], "Transfer Success")
        note = payload["transfer"]
        self.assertEqual(note["amount"], "10000")
        self.assertEqual(note["from"], f"ID : [{source['account_number']}], Name : Sender")
        self.assertEqual(note["to"], f"ID : [{destination['account_number']}], Name : Receiver")
        self.assertEqual(note["description"], "rent")

        self.assertEqual(self.database.get_account(source["id"]).balance, 20_000)
        self.assertEqual(self.database.get_account(destination["id"]).balance, 15_000)

        missing = self.client.post(
            f"/banks/login/{source['id']}/transfer",
            headers=self.headers,
            json={"toId": "unknown", "nominalTransfer": 1},
        )
        self.assertEqual(missing.status_code, 404)

        broke = self.client.post(
            f"/banks/login/{source['id']}/transfer",
            headers=self.headers,
            json={"toId": destination["id"], "nominalTransfer": 20_001},
        )
        self.assertEqual(broke.status_code, 422)
        self.assertEqual(self.database.get_account(source["id"]).balance, 20_000)

    def test_amounts_are_bounded_by_the_balance_ceiling(self) -> None:
        for nominal in (MAX_BALANCE + 1, 2**63):
            response = self.client.post(
                "/banks/createAcc",
                headers=self.headers,
                json={
                    "name": "Whale",
                    "email": "whale@example.com",
                    "password": "secret1",
                    "password_confirm": "secret1",
                    "nominal": nominal,
                },
            )
            self.assertEqual(response.status_code, 422, response.text)
        self.assertIsNone(self.database.get_account_by_email("whale@example.com"))

        full = self._create_account("Whale", "whale@example.com", nominal=MAX_BALANCE)
        saver = self._create_account("Saver", "saver@example.com")

        for field, route in (("nominalSetor", "deposit"), ("nominalTarik", "withdraw")):
            for amount in (MAX_BALANCE + 1, 2**63):
                response = self.client.put(
                    f"/banks/login/{saver['id']}/{route}",
                    headers=self.headers,
                    json={field: amount},
                )
                self.assertEqual(response.status_code, 422, response.text)
        too_big = self.client.post(
            f"/banks/login/{saver['id']}/transfer",
            headers=self.headers,
            json={"toId": full["id"], "nominalTransfer": 2**63},
        )
        self.assertEqual(too_big.status_code, 422, too_big.text)

        overflow = self.client.put(
            f"/banks/login/{full['id']}/deposit",
            headers=self.headers,
            json={"nominalSetor": 1},
        )
        self.assertEqual(overflow.status_code, 422, overflow.text)
        self.assertEqual(overflow.json()["detail"]["code"], "BALANCE_LIMIT_EXCEEDED")

        credit = self.client.post(
            f"/banks/login/{saver['id']}/transfer",
            headers=self.headers,
            json={"toId": full["id"], "nominalTransfer": 1},
        )
        self.assertEqual(credit.status_code, 422, credit.text)
        self.assertEqual(credit.json()["detail"]["code"], "BALANCE_LIMIT_EXCEEDED")

        self.assertEqual(self.database.get_account(full["id"]).balance, MAX_BALANCE)
        self.assertEqual(self.database.get_account(saver["id"]).balance, 50_000)

    def test_change_password_update_and_delete(self) -> None:
        account = self._create_account("Saver", "saver@example.com")
        url = f"/banks/login/{account['id']}"

        mismatch = self.client.post(
            f"{url}/changePassword",
            headers=self.headers,
            json={"oldPassword": "secret1", "newPassword": "newsecret", "confirmPassword": "other"},
        )
        self.assertEqual(mismatch.status_code, 400)

        wrong = self.client.post(
            f"{url}/changePassword",
            headers=self.headers,
            json={"oldPassword": "nope", "newPassword": "newsecret", "confirmPassword": "newsecret"},
        )
        self.assertEqual(wrong.status_code, 401)

        changed = self.client.post(
            f"{url}/changePassword",
            headers=self.headers,
            json={"oldPassword": "secret1", "newPassword": "newsecret", "confirmPassword": "newsecret"},
        )
        self.assertEqual(changed.status_code, 200)
        self.assertEqual(changed.json(), {"id": account["id"]})

        login = self.client.post("/banks/login", json={"email": "saver@example.com", "password": "newsecret"})
        self.assertEqual(login.status_code, 200)

        updated = self.client.put(
            f"/banks/{account['id']}",
            headers=self.headers,
            json={"name": "Renamed", "email": "renamed@example.com"},
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(self.database.get_account(account["id"]).name, "Renamed")

        deleted = self.client.delete(f"{url}/delete", headers=self.headers)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json(), {"id": account["id"]})

        again = self.client.delete(f"{url}/delete", headers=self.headers)
        self.assertEqual(again.status_code, 404)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def test_user_crud_and_pagination(self) -> None:
        for index in range(3):
            created = self.client.post(
                "/users",
                headers=self.headers,
                json={
                    "name": f"User {index}",
                    "email": f"user{index}@example.com",
                    "password": "secret1",
                    "password_confirm": "secret1",
                },
            )
            self.assertEqual(created.status_code, 200, created.text)

        everyone = self.client.get("/users", headers=self.headers)
        self.assertEqual(len(everyone.json()), 4)

        page = self.client.get("/users", headers=self.headers, params={"page_number": 2, "page_size": 3})
        body = page.json()
        self.assertEqual(body["count"], 4)
        self.assertEqual(body["total_pages"], 2)
        self.assertTrue(body["has_previous_page"])
        self.assertFalse(body["has_next_page"])
        self.assertEqual(len(body["data"]), 1)

        searched = self.client.get("/users", headers=self.headers, params={"search": "email:user1"})
        self.assertEqual([user["email"] for user in searched.json()], ["user1@example.com"])

        user_id = searched.json()[0]["id"]
        self.assertEqual(self.client.get(f"/users/{user_id}", headers=self.headers).json()["name"], "User 1")

        taken = self.client.put(
            f"/users/{user_id}",
            headers=self.headers,
            json={"name": "User 1", "email": ADMIN_EMAIL},
        )
        self.assertEqual(taken.status_code, 409)

        self.assertEqual(self.client.delete(f"/users/{user_id}", headers=self.headers).status_code, 200)
        self.assertEqual(self.client.get(f"/users/{user_id}", headers=self.headers).status_code, 404)

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
