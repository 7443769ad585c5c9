"""HTTP layer over an in-memory store."""
import io
import json

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.catalog_context import build_catalog_context, get_catalog_context

PRICE_LIST_XML = """<products>
  <product><kod>UTP-6</kod><nazev>UTP kabel</nazev><vasecenabezdph>100</vasecenabezdph>
    <vasecenasdph>121</vasecenasdph><dostupnost>4</dostupnost></product>
  <product><kod>SW-8</kod><nazev>Switch</nazev><vasecenabezdph>800</vasecenabezdph>
    <vasecenasdph>968</vasecenasdph><dostupnost>0</dostupnost></product>
</products>"""

DESCRIPTIONS_XML = """<products>
  <product><kod>UTP-6</kod><kategorie>Kabely</kategorie><vyrobce>Solarix</vyrobce></product>
</products>"""


@pytest.fixture
def client(store, settings):
    ctx = build_catalog_context(store, settings=settings)
    app.dependency_overrides[get_catalog_context] = lambda: ctx
    yield TestClient(app)
    app.dependency_overrides.clear()


def _import_feeds(client):
    assert client.post("/api/v1/products/import/xml-cenik", json={"xml": PRICE_LIST_XML}).status_code == 200
    assert client.post("/api/v1/products/import/xml-popisky", json={"xml": DESCRIPTIONS_XML}).status_code == 200


class TestImportEndpoints:

    def test_price_list_import(self, client):
        response = client.post("/api/v1/products/import/xml-cenik", json={"xml": PRICE_LIST_XML})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert body["source"] == "xml_cenik"
        assert "warning" not in body

    def test_feed_without_products_is_a_warning(self, client, store):
        response = client.post("/api/v1/products/import/xml-cenik", json={"xml": "<products/>"})

        assert response.status_code == 200
        assert response.json()["count"] == 0
        assert response.json()["warning"]
        assert "source_xml_cenik" not in store.data

    def test_invalid_xml(self, client):
        response = client.post("/api/v1/products/import/xml-popisky", json={"xml": "<products><product>"})

        assert response.status_code == 400
        assert response.json()["error_type"] == "FeedParseError"

    def test_missing_body_field(self, client):
        response = client.post("/api/v1/products/import/xml-cenik", json={})
        assert response.status_code == 422

    def test_excel_upload(self, client):
        buffer = io.BytesIO()
        pd.DataFrame([{"Kód": "UTP-6", "Cena bez DPH": "90"}]).to_excel(buffer, index=False)
        _import_feeds(client)

        response = client.post(
            "/api/v1/products/import/excel",
            files={"file": ("prices.xlsx", buffer.getvalue(),
                            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
        )

        assert response.status_code == 200
        assert response.json()["filename"] == "prices.xlsx"
        product = client.get("/api/v1/products/UTP-6").json()
        assert product["cena_bez_dph"] == 90
        assert product["merged_sources"] == ["xml_cenik", "xml_popisky", "excel"]

    def test_excel_wrong_extension(self, client):
        response = client.post(
            "/api/v1/products/import/excel",
            files={"file": ("prices.csv", b"kod;nazev", "text/csv")},
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "ImportValidationError"

    def test_import_history(self, client):
        _import_feeds(client)

        history = client.get("/api/v1/products/import-history").json()["import_history"]

        assert [entry["type"] for entry in history] == ["xml_popisky", "xml_cenik"]


class TestCatalogEndpoints:

    def test_list_with_filters(self, client):
        _import_feeds(client)

        body = client.get("/api/v1/products", params={"kategorie": "Kabely"}).json()

        assert [p["kod"] for p in body["products"]] == ["UTP-6"]
        assert body["pagination"] == {"page": 1, "limit": 50, "totalProducts": 1, "totalPages": 1}
        assert body["lastUpdated"]

    def test_list_sorted_in_stock(self, client):
        _import_feeds(client)

        body = client.get("/api/v1/products", params={"sort": "cena_s_dph", "order": "desc"}).json()
        assert [p["kod"] for p in body["products"]] == ["SW-8", "UTP-6"]

        body = client.get("/api/v1/products", params={"in_stock": "true"}).json()
        assert [p["kod"] for p in body["products"]] == ["UTP-6"]

    @pytest.mark.parametrize("params", [{"limit": 0}, {"page": 0}, {"sort": "popis"}, {"order": "up"}])
    def test_invalid_query(self, client, params):
        assert client.get("/api/v1/products", params=params).status_code == 422

    def test_lookups(self, client):
        _import_feeds(client)

        assert client.get("/api/v1/products/categories").json() == ["Kabely"]
        assert client.get("/api/v1/products/manufacturers").json() == ["Solarix"]
        assert client.get("/api/v1/products/price-range").json() == {"min_price": 121, "max_price": 968}

    def test_detail(self, client):
        _import_feeds(client)

        product = client.get("/api/v1/products/UTP-6").json()

        assert product["nazev"] == "UTP kabel"
        assert product["kategorie"] == "Kabely"
        assert product["dostupnost"] == 4

    def test_detail_not_found(self, client):
        response = client.get("/api/v1/products/NOPE")

        assert response.status_code == 404
        assert response.json()["error_type"] == "ProductNotFoundError"

    def test_manual_merge(self, store, settings):
        ctx = build_catalog_context(store, settings=settings, policy="manual")
        app.dependency_overrides[get_catalog_context] = lambda: ctx
        try:
            client = TestClient(app)
            client.post("/api/v1/products/import/xml-cenik", json={"xml": PRICE_LIST_XML})
            assert client.get("/api/v1/products").json()["products"] == []

            response = client.post("/api/v1/products/merge")

            assert response.json() == {"message": "Merged 2 products", "count": 2}
            assert len(client.get("/api/v1/products").json()["products"]) == 2
        finally:
            app.dependency_overrides.clear()

    def test_corrupt_source_is_a_server_error(self, client, store):
        store.data["source_excel"] = "{broken"

        response = client.post("/api/v1/products/merge")

        assert response.status_code == 500
        assert response.json()["error_type"] == "MergeError"


class TestAsyncImport:

    def test_queues_worker_task(self, client, monkeypatch):
        from celery_app.tasks import tasks

        calls = []
        monkeypatch.setattr(
            tasks.import_product_feed, "apply_async",
            lambda **kwargs: calls.append(kwargs),
        )

        response = client.post(
            "/api/v1/products/import/async",
            json={"source": "xml_cenik", "xml": PRICE_LIST_XML, "filename": "cenik.xml"},
        )

        assert response.status_code == 202
        import_id = response.json()["import_id"]
        assert calls[0]["queue"] == "imports"
        assert calls[0]["kwargs"]["import_id"] == import_id
        assert calls[0]["kwargs"]["source"] == "xml_cenik"

        status = client.get(f"/api/v1/products/import/status/{import_id}").json()
        assert status["status"] == "processing"
        assert status["type"] == "xml_cenik"

    def test_excel_is_rejected(self, client):
        response = client.post("/api/v1/products/import/async", json={"source": "excel", "xml": "<x/>"})
        assert response.status_code == 400

    def test_unknown_status(self, client):
        response = client.get("/api/v1/products/import/status/nope")
        assert response.status_code == 404
        assert response.json()["error_type"] == "ImportNotFoundError"


class TestImportStatusEndpoints:

    @pytest.fixture
    def queued(self, client, monkeypatch):
        from celery_app.tasks import tasks

        monkeypatch.setattr(tasks.import_product_feed, "apply_async", lambda **kwargs: None)

        def _queue():
            response = client.post("/api/v1/products/import/async", json={"source": "xml_cenik", "xml": PRICE_LIST_XML})
            return response.json()["import_id"]
        return _queue

    def test_list_and_active(self, client, queued, store):
        first = queued()
        second = queued()
        status = json.loads(store.data[f"import_status:{first}"])
        status.update(status="completed", finished_at=status["started_at"])
        store.data[f"import_status:{first}"] = json.dumps(status)

        listed = client.get("/api/v1/products/import/status").json()
        assert {s["id"] for s in listed} == {first, second}

        active = client.get("/api/v1/products/import/status", params={"active": True}).json()
        assert [s["id"] for s in active] == [second]

    def test_cancel(self, client, queued):
        import_id = queued()

        response = client.post(f"/api/v1/products/import/status/{import_id}/cancel")

        assert response.status_code == 200
        assert response.json() == {"message": "Import cancelled", "import_id": import_id, "status": "cancelled"}
        status = client.get(f"/api/v1/products/import/status/{import_id}").json()
        assert status["status"] == "cancelled"
        assert status["finished_at"]

        again = client.post(f"/api/v1/products/import/status/{import_id}/cancel").json()
        assert again["status"] == "cancelled"
        assert "already" in again["message"]

    def test_cancel_unknown(self, client):
        assert client.post("/api/v1/products/import/status/nope/cancel").status_code == 404

    def test_cleanup(self, client, queued, store):
        old = queued()
        store.data[f"import_status:{old}"] = json.dumps({
            "id": old, "type": "xml_cenik", "status": "failed",
            "started_at": "2020-01-01T00:00:00.000Z", "finished_at": "2020-01-01T00:01:00.000Z",
            "products_count": 0, "errors": ["boom"],
        })
        running = queued()

        response = client.post("/api/v1/products/import/cleanup")

        assert response.status_code == 200
        assert response.json() == {"removed": 1}
        assert client.get(f"/api/v1/products/import/status/{old}").status_code == 404
        assert client.get(f"/api/v1/products/import/status/{running}").status_code == 200


class TestOffersEndpoints:

    def test_crud(self, client):
        _import_feeds(client)

        created = client.post("/api/v1/offers", json={
            "nazev": "Kabeláž", "zakaznik": "Firma s.r.o.",
            "polozky": [{"kod": "UTP-6", "pocet": 2}],
        })
        assert created.status_code == 201
        offer = created.json()
        assert offer["cislo"].startswith("N")
        assert offer["celkova_cena_s_dph"] == 242

        updated = client.put(f"/api/v1/offers/{offer['id']}", json={"stav": "odesláno"}).json()
        assert updated["stav"] == "odesláno"
        assert updated["polozky"] == offer["polozky"]

        assert [o["id"] for o in client.get("/api/v1/offers").json()] == [offer["id"]]

        deleted = client.delete(f"/api/v1/offers/{offer['id']}")
        assert deleted.json() == {"message": "Offer deleted", "id": offer["id"]}
        assert client.get(f"/api/v1/offers/{offer['id']}").status_code == 404

    def test_unknown_item(self, client):
        response = client.post("/api/v1/offers", json={
            "nazev": "X", "zakaznik": "Y", "polozky": [{"kod": "NOPE"}],
        })
        assert response.status_code == 400


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
