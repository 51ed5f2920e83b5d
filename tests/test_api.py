from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from backend.app.services.markup_renderer import CONVERTER_VERSION


def _create_blog(client: TestClient, **overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "title": "Garden Notes",
        "raw_content": "## Spring\n![Tulips](image:tmp-1)\n- water\n- prune",
        "status": "published",
        "tags": ["garden"],
        "uploads": [
            {
                "asset_id": "cld_tulips",
                "url": "https://cdn.example.test/tulips.jpg",
                "alt_text": "Tulips",
                "temporary_id": "tmp-1",
            }
        ],
    }
    body.update(overrides)
    response = client.post("/blogs", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_check_reports_converter_version(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "converter_version": CONVERTER_VERSION}
    assert response.headers["X-Request-ID"]


def test_request_id_header_is_echoed(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "req-abc"})

    assert response.headers["X-Request-ID"] == "req-abc"


def test_create_blog_returns_rendered_document(client: TestClient) -> None:
    created = _create_blog(client)

    assert created["slug"] == "garden-notes"
    assert created["raw_content"].count("![Tulips](image:cld_tulips)") == 1
    assert "tmp-1" not in created["raw_content"]
    assert created["rendered_version"] == CONVERTER_VERSION
    assert created["rendered_content"].count("<img ") == 1
    assert '<ul class="list-disc ml-6 my-4 space-y-2">' in created["rendered_content"]
    assert created["read_time_minutes"] == 1
    assert created["images"] == [
        {
            "asset_id": "cld_tulips",
            "url": "https://cdn.example.test/tulips.jpg",
            "alt_text": "Tulips",
            "anchor": "![Tulips](image:cld_tulips)",
            "position": 0,
        }
    ]


def test_create_blog_rejects_invalid_payloads(client: TestClient) -> None:
    assert client.post("/blogs", json={"title": "x"}).status_code == 422
    assert (
        client.post("/blogs", json={"title": "x", "raw_content": "y", "extra": 1}).status_code
        == 422
    )
    blank = client.post("/blogs", json={"title": "   ", "raw_content": "body"})
    assert blank.status_code == 400


def test_get_blog_by_slug_and_id(client: TestClient) -> None:
    created = _create_blog(client)

    by_slug = client.get("/blogs/garden-notes")
    by_id = client.get(f"/blogs/id/{created['document_id']}")

    assert by_slug.status_code == 200
    assert by_id.status_code == 200
    assert by_slug.json()["document_id"] == created["document_id"]
    assert by_id.json()["rendered_content"] == created["rendered_content"]
    assert client.get("/blogs/missing-slug").status_code == 404
    assert client.get("/blogs/id/blog_missing").status_code == 404


def test_list_blogs_filters_by_status_and_tag(client: TestClient) -> None:
    _create_blog(client)
    _create_blog(client, title="Kitchen Notes", tags=["food"], uploads=[])
    _create_blog(client, title="Draft Notes", status="draft", uploads=[])

    response = client.get("/blogs", params={"status": "published", "tag": "garden"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 1
    assert payload["page"] == 1
    assert payload["page_size"] == 9
    assert payload["total_pages"] == 1
    assert [item["slug"] for item in payload["items"]] == ["garden-notes"]

    paged = client.get("/blogs", params={"page": 2, "page_size": 2}).json()
    assert paged["total"] == 3
    assert len(paged["items"]) == 1
    assert client.get("/blogs", params={"status": "bogus"}).status_code == 422


def test_update_blog_resolves_new_uploads(client: TestClient) -> None:
    created = _create_blog(client)
    document_id = created["document_id"]

    response = client.put(
        f"/blogs/{document_id}",
        json={
            "raw_content": created["raw_content"] + "\n![Roses](image:tmp-2)",
            "uploads": [
                {
                    "asset_id": "cld_roses",
                    "url": "https://cdn.example.test/roses.jpg",
                    "alt_text": "Roses",
                    "temporary_id": "tmp-2",
                }
            ],
        },
    )

    assert response.status_code == 200, response.text
    updated = response.json()
    assert [image["asset_id"] for image in updated["images"]] == ["cld_tulips", "cld_roses"]
    assert updated["rendered_content"].count("<img ") == 2
    assert "image:tmp-2" not in updated["raw_content"]


def test_update_blog_validation_and_missing_document(client: TestClient) -> None:
    created = _create_blog(client)

    bad = client.put(
        f"/blogs/{created['document_id']}",
        json={"replace_all_images": True},
    )
    assert bad.status_code == 422
    assert client.put("/blogs/blog_missing", json={"title": "x"}).status_code == 404


def test_content_image_list_and_delete(client: TestClient) -> None:
    created = _create_blog(client)
    document_id = created["document_id"]

    listed = client.get(f"/blogs/{document_id}/content-images")
    assert listed.status_code == 200
    assert listed.json()["count"] == 1

    deleted = client.delete(f"/blogs/{document_id}/content-images/cld_tulips")
    assert deleted.status_code == 200
    payload = deleted.json()
    assert payload["deleted_image"]["asset_id"] == "cld_tulips"
    assert payload["remaining_images"] == 0
    assert "<img " not in payload["document"]["rendered_content"]

    again = client.delete(f"/blogs/{document_id}/content-images/cld_tulips")
    assert again.status_code == 404


def test_delete_blog(client: TestClient) -> None:
    created = _create_blog(client)

    response = client.delete(f"/blogs/{created['document_id']}")

    assert response.status_code == 204
    assert client.get("/blogs/garden-notes").status_code == 404
    assert client.delete(f"/blogs/{created['document_id']}").status_code == 404


def test_preview_renders_without_persisting(client: TestClient) -> None:
    response = client.post(
        "/blogs/preview",
        json={
            "raw_content": "{color:#336699}Preview{/color}\n![Pic](image:cld_1)",
            "images": [
                {
                    "asset_id": "cld_1",
                    "url": "https://cdn.example.test/pic.jpg",
                    "alt_text": "Pic",
                }
            ],
        },
    )

    assert response.status_code == 200, response.text
    payload = response.json()
    assert '<span style="color: #336699;">Preview</span>' in payload["rendered_content"]
    assert 'src="https://cdn.example.test/pic.jpg"' in payload["rendered_content"]
    assert payload["unresolved_asset_ids"] == []
    assert client.get("/blogs").json()["total"] == 0
