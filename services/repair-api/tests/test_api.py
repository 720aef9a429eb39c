import asyncio
import datetime as dt
import tempfile
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import select
from support import create_schema, seed_shop, sqlite_engine

from repairdesk import models
from repairdesk.auth import get_current_user
from repairdesk.deps import get_sessionmaker
from repairdesk.main import app
from repairdesk.routers import labels as labels_router
from repairdesk.routers.scanning import get_scan_registry
from repairdesk.scan_session import ScanSessionRegistry


class ApiTestCase(unittest.TestCase):
    role = "worker"

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.engine, self.maker = sqlite_engine(self.tmp.name)
        asyncio.run(create_schema(self.engine))
        self.ids = asyncio.run(seed_shop(self.maker))
        self.registry = ScanSessionRegistry()
        self.user = SimpleNamespace(id="u1", tenant_id="tenant-a", role=self.role, active=True)

        app.dependency_overrides[get_sessionmaker] = lambda: self.maker
        app.dependency_overrides[get_current_user] = lambda: self.user
        app.dependency_overrides[get_scan_registry] = lambda: self.registry
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        asyncio.run(self.engine.dispose())
        self.tmp.cleanup()


class ResolveEndpointTests(ApiTestCase):
    def test_resolve_part(self) -> None:
        response = self.client.post("/scan/resolve", json={"code": "part:abc123"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["screen"], "PartDetail")
        self.assertEqual(body["kind"], "part")
        self.assertEqual(body["id"], "abc123")
        self.assertEqual(body["payload"]["record"]["category"], "pantallas")

    def test_resolve_repair_includes_customer_and_equipment(self) -> None:
        response = self.client.post("/scan/resolve", json={"code": "repair:rep1"})
        self.assertEqual(response.status_code, 200)
        related = response.json()["payload"]["related"]
        self.assertEqual(related["customer"]["name"], "Ana Pérez")
        self.assertEqual(related["equipment"]["serial_number"], "SN123")

    def test_malformed_code(self) -> None:
        response = self.client.post("/scan/resolve", json={"code": "repair-abc123"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["code"], "malformed_code")

    def test_unknown_kind(self) -> None:
        response = self.client.post("/scan/resolve", json={"code": "vehicle:99"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["code"], "unknown_kind")

    def test_foreign_and_missing_are_indistinguishable(self) -> None:
        foreign = self.client.post("/scan/resolve", json={"code": "part:part9"})
        missing = self.client.post("/scan/resolve", json={"code": "part:doesnotexist"})
        self.assertEqual(foreign.status_code, 404)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(foreign.json(), missing.json())


class CodeEndpointTests(ApiTestCase):
    def test_code_for_owned_part(self) -> None:
        response = self.client.get("/codes/part/abc123")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"kind": "part", "id": "abc123", "code": "part:abc123"})

    def test_code_for_foreign_part_is_not_found(self) -> None:
        self.assertEqual(self.client.get("/codes/part/part9").status_code, 404)

    def test_unknown_kind_path(self) -> None:
        self.assertEqual(self.client.get("/codes/vehicle/99").status_code, 422)

    def test_png(self) -> None:
        response = self.client.get("/codes/equipment/eq1/qr.png")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "image/png")
        self.assertTrue(response.content.startswith(b"\x89PNG"))


class LabelEndpointTests(ApiTestCase):
    def test_preview(self) -> None:
        response = self.client.post("/labels/preview", json={"kind": "part", "id": "abc123", "size": "small"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "rendered")
        self.assertIn("^FDHA,part:abc123^FS", body["zpl"])

    def test_preview_of_foreign_entity(self) -> None:
        response = self.client.post("/labels/preview", json={"kind": "part", "id": "part9"})
        self.assertEqual(response.status_code, 404)

    def test_print_to_network_printer(self) -> None:
        with patch.object(labels_router.settings, "PRINTER_MODE", "network"), patch.object(
            labels_router.zpl_print, "send_raw_zpl", return_value=True
        ) as send:
            response = self.client.post("/labels/print", json={"kind": "repair", "id": "rep1", "copies": 2})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "queued")
        self.assertIsNone(response.json()["zpl"])
        self.assertIn(b"^PQ2", send.call_args.args[0])

    def test_printer_failure(self) -> None:
        with patch.object(labels_router.settings, "PRINTER_MODE", "network"), patch.object(
            labels_router.zpl_print, "send_raw_zpl", side_effect=RuntimeError("timed out")
        ):
            response = self.client.post("/labels/print", json={"kind": "repair", "id": "rep1"})
        self.assertEqual(response.status_code, 502)

    def test_local_mode_returns_zpl(self) -> None:
        with patch.object(labels_router.settings, "PRINTER_MODE", "local"):
            response = self.client.post("/labels/print", json={"kind": "equipment", "id": "eq1"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["zpl"].startswith("^XA"))


class RecordEndpointTests(ApiTestCase):
    def test_part_detail_has_qr_code(self) -> None:
        response = self.client.get("/parts/abc123")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["qr_code"], "part:abc123")

    def test_foreign_part_is_not_found(self) -> None:
        self.assertEqual(self.client.get("/parts/part9").status_code, 404)

    def test_parts_filtered_by_compatibility(self) -> None:
        response = self.client.get("/parts", params={"compatible_with": "t490"})
        self.assertEqual([p["id"] for p in response.json()], ["abc123"])
        response = self.client.get("/parts", params={"compatible_with": "X1"})
        self.assertEqual(response.json(), [])

    def test_customer_list_is_tenant_scoped_with_counts(self) -> None:
        response = self.client.get("/customers")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([c["id"] for c in body], ["cust1"])
        self.assertEqual(body[0]["equipment_count"], 1)
        self.assertEqual(body[0]["active_repairs"], 1)

    def test_create_repair_takes_customer_from_equipment(self) -> None:
        response = self.client.post("/repairs", json={"equipment_id": "eq1", "title": "Teclado", "priority": "high"})
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["customer_id"], "cust1")
        self.assertEqual(body["priority"], "high")
        self.assertEqual(body["qr_code"], f"repair:{body['id']}")

        scanned = self.client.post("/scan/resolve", json={"code": body["qr_code"]})
        self.assertEqual(scanned.status_code, 200)
        self.assertEqual(scanned.json()["screen"], "RepairDetail")

    def test_completing_repair_sets_completion_date(self) -> None:
        response = self.client.patch("/repairs/rep1", json={"status": "completed"})
        self.assertEqual(response.status_code, 200)
        self.assertIsNotNone(response.json()["completion_date"])
        response = self.client.patch("/repairs/rep1", json={"status": "in_progress"})
        self.assertIsNone(response.json()["completion_date"])

    def test_equipment_detail(self) -> None:
        body = self.client.get("/equipment/eq1").json()
        self.assertEqual(body["qr_code"], "equipment:eq1")
        self.assertEqual(body["repair_count"], 1)
        self.assertEqual(body["customer"]["id"], "cust1")

    def test_equipment_for_foreign_customer_is_rejected(self) -> None:
        response = self.client.post("/equipment", json={"customer_id": "cust9", "brand": "HP", "model": "840"})
        self.assertEqual(response.status_code, 404)


class EquipmentUpdateTests(ApiTestCase):
    def test_edit_equipment(self) -> None:
        response = self.client.patch("/equipment/eq1", json={"model": "T490", "year": 2020, "serial_number": "SN999"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual((body["brand"], body["model"], body["year"]), ("Lenovo", "T490", 2020))
        self.assertEqual(self.client.get("/equipment/eq1").json()["serial_number"], "SN999")

    def test_updated_at_is_utc_without_offset(self) -> None:
        before = dt.datetime.now(dt.timezone.utc).replace(tzinfo=None, microsecond=0)
        body = self.client.patch("/equipment/eq1", json={"description": "Bisagra floja"}).json()
        updated = dt.datetime.fromisoformat(body["updated_at"])
        self.assertIsNone(updated.tzinfo)
        self.assertGreaterEqual(updated, before)
        self.assertLess(updated - before, dt.timedelta(minutes=1))

    def test_move_to_foreign_customer_is_rejected(self) -> None:
        response = self.client.patch("/equipment/eq1", json={"customer_id": "cust9"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.client.get("/equipment/eq1").json()["customer_id"], "cust1")

    def test_foreign_equipment_is_not_found(self) -> None:
        self.assertEqual(self.client.patch("/equipment/nope", json={"brand": "HP"}).status_code, 404)


class UserManagementTests(ApiTestCase):
    role = "admin"

    def test_list_is_tenant_scoped(self) -> None:
        response = self.client.get("/auth/users")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(sorted(u["id"] for u in response.json()), ["u1", "u2"])
        self.assertEqual([u["id"] for u in self.client.get("/auth/users", params={"q": "técnico"}).json()], ["u2"])

    def test_disable_and_promote_user(self) -> None:
        response = self.client.patch("/auth/users/u2", json={"active": False, "role": "admin"})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["active"])
        self.assertEqual(response.json()["role"], "admin")

    def test_admin_cannot_disable_or_demote_self(self) -> None:
        self.assertEqual(self.client.patch("/auth/users/u1", json={"active": False}).status_code, 400)
        self.assertEqual(self.client.patch("/auth/users/u1", json={"role": "worker"}).status_code, 400)
        self.assertEqual(self.client.patch("/auth/users/u1", json={"name": "Jefa"}).status_code, 200)

    def test_delete_user_keeps_audit_rows(self) -> None:
        self.assertEqual(self.client.delete("/auth/users/u2").status_code, 204)
        self.assertEqual([u["id"] for u in self.client.get("/auth/users").json()], ["u1"])

        async def audit_owners() -> list:
            async with self.maker() as session:
                rows = await session.execute(select(models.Audit.user_id))
                return list(rows.scalars())

        self.assertEqual(asyncio.run(audit_owners()), [None])

    def test_admin_cannot_delete_self(self) -> None:
        self.assertEqual(self.client.delete("/auth/users/u1").status_code, 400)

    def test_users_of_other_tenant_are_not_found(self) -> None:
        self.assertEqual(self.client.patch("/auth/users/u9", json={"active": False}).status_code, 404)
        self.assertEqual(self.client.delete("/auth/users/u9").status_code, 404)

    def test_workers_cannot_manage_users(self) -> None:
        self.user.role = "worker"
        self.assertEqual(self.client.get("/auth/users").status_code, 403)
        self.assertEqual(self.client.delete("/auth/users/u2").status_code, 403)


class ReadOnlyUserTests(ApiTestCase):
    role = "user"

    def test_user_can_scan_but_not_create(self) -> None:
        self.assertEqual(self.client.post("/scan/resolve", json={"code": "part:abc123"}).status_code, 200)
        response = self.client.post("/customers", json={"name": "Nuevo"})
        self.assertEqual(response.status_code, 403)


class ScanSessionEndpointTests(ApiTestCase):
    def _open(self) -> str:
        response = self.client.post("/scan/sessions")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["state"], "scanning")
        return response.json()["id"]

    def test_successful_scan_returns_to_idle(self) -> None:
        sid = self._open()
        response = self.client.post(f"/scan/sessions/{sid}/scan", json={"code": "equipment:eq1"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["state"], "idle")
        self.assertEqual(body["target"]["screen"], "EquipmentDetail")

        again = self.client.post(f"/scan/sessions/{sid}/scan", json={"code": "part:abc123"})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(self.client.post(f"/scan/sessions/{sid}/start").json()["state"], "scanning")

    def test_error_then_retry(self) -> None:
        sid = self._open()
        response = self.client.post(f"/scan/sessions/{sid}/scan", json={"code": "part:part9"})
        body = response.json()
        self.assertEqual(body["state"], "not_found")
        self.assertEqual(body["error"]["code"], "not_found")

        self.assertEqual(self.client.get(f"/scan/sessions/{sid}").json()["state"], "not_found")
        self.assertEqual(self.client.post(f"/scan/sessions/{sid}/retry").json()["state"], "scanning")

    def test_foreign_and_missing_codes_give_identical_session_bodies(self) -> None:
        sid = self._open()
        foreign = self.client.post(f"/scan/sessions/{sid}/scan", json={"code": "part:part9"})
        foreign_view = self.client.get(f"/scan/sessions/{sid}").json()
        foreign_again = self.client.post(f"/scan/sessions/{sid}/scan", json={"code": "part:abc123"})
        self.client.post(f"/scan/sessions/{sid}/retry")
        missing = self.client.post(f"/scan/sessions/{sid}/scan", json={"code": "part:nope"})
        missing_view = self.client.get(f"/scan/sessions/{sid}").json()
        missing_again = self.client.post(f"/scan/sessions/{sid}/scan", json={"code": "part:abc123"})

        self.assertEqual(foreign.status_code, missing.status_code)
        self.assertEqual(foreign.json(), missing.json())
        self.assertEqual(foreign_view, missing_view)
        self.assertEqual(foreign_again.status_code, 409)
        self.assertEqual(foreign_again.json(), missing_again.json())

    def test_opening_beyond_owner_limit_closes_oldest(self) -> None:
        self.registry = ScanSessionRegistry(max_per_owner=1)
        first = self._open()
        second = self._open()
        self.assertEqual(len(self.registry), 1)
        self.assertEqual(self.client.get(f"/scan/sessions/{first}").status_code, 404)
        self.assertEqual(self.client.get(f"/scan/sessions/{second}").status_code, 200)

    def test_session_of_other_user_is_hidden(self) -> None:
        sid = self._open()
        self.user.id = "u2"
        self.assertEqual(self.client.get(f"/scan/sessions/{sid}").status_code, 404)

    def test_delete_closes_session(self) -> None:
        sid = self._open()
        self.assertEqual(self.client.delete(f"/scan/sessions/{sid}").status_code, 204)
        self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.client.get(f"/scan/sessions/{sid}").status_code, 404)


class HealthTests(unittest.TestCase):
    def test_health(self) -> None:
        response = TestClient(app).get("/health")
        self.assertEqual(response.json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()
