import asyncio
import io
import threading

import pytest
from PIL import Image

from app.domain.render import service as render_service
from app.models_render import RenderJob, RenderTemplate
from app.render import renderer
from app.render.renderer import is_valid_image_url, layer_box, render_template
from app.render.variables import (
    RenderContext,
    calculate_auto_size,
    format_date,
    format_price,
    resolve_color,
    resolve_variables,
)

RED_CARD = {
    "canvas": {"width": 200, "height": 100},
    "layers": [
        {"id": "bg", "type": "shape", "position": {}, "content": {"shape": "rectangle", "fill": "#ff0000"}},
    ],
}


@pytest.fixture
def uploads(monkeypatch):
    stored = {}

    def fake_upload(key, content, content_type=None, bucket=None, metadata=None):
        stored[key] = content
        return f"https://cdn.test/{key}"

    monkeypatch.setattr(render_service, "upload_bytes", fake_upload)
    return stored


# ============================================================================
# VARIABLES
# ============================================================================


class TestVariables:
    def test_lookups_and_helpers(self):
        context = RenderContext(
            variables={"price": 1500000, "city": "orlando"},
            listing={"beds": 4, "listedAt": "2026-05-01"},
        )
        text = "{{formatPrice price}} in {{capitalize city}} - {{listing.beds}} beds, {{formatDate listing.listedAt}}"
        assert resolve_variables(text, context) == "$1.5M in Orlando - 4 beds, May 1, 2026"

    def test_missing_and_blocked_lookups_stay_visible(self):
        context = RenderContext(variables={"a": {"b": 1}})
        assert resolve_variables("{{missing}}", context) == "{{missing}}"
        assert resolve_variables("{{a.__class__}}", context) == "{{a.__class__}}"

    def test_price_formats(self):
        assert format_price(2000000) == "$2M"
        assert format_price("1250") == "$1,250"
        assert format_price(None) == "$0"
        assert format_date("not a date") == "not a date"

    def test_colors(self):
        context = RenderContext(variables={"accent": "#123456"}, brand_kit={"primaryColor": "#abcdef"})
        assert resolve_color("accent", context) == "#123456"
        assert resolve_color("primaryColor", context) == "#abcdef"
        assert resolve_color("secondaryColor", context) == "#ffffff"
        assert resolve_color("{{accent}}", context) == "#123456"
        assert resolve_color("not-a-color", context) == "#000000"

    def test_auto_size_breakpoints(self):
        config = {"enabled": True, "maxSize": 64, "minSize": 20, "breakpoints": [{"maxLength": 10, "fontSize": 60}]}
        assert calculate_auto_size("short", config, 500) == 60
        assert calculate_auto_size("x" * 40, config, 500) == 20
        assert calculate_auto_size("anything", {"maxSize": 30}, 500) == 30


# ============================================================================
# RENDERER
# ============================================================================


class TestRenderer:
    def test_layer_box_anchors(self):
        parent = (0, 0, 1000, 500)
        assert layer_box({"x": 10, "y": 20, "width": 100, "height": 50}, parent) == (10, 20, 100, 50)
        assert layer_box({"x": 10, "y": 20, "width": 100, "height": 50, "anchor": "bottom-right"}, parent) == (
            890,
            430,
            100,
            50,
        )
        assert layer_box({"width": "50%", "height": "10%"}, parent) == (0, 0, 500, 50)

    def test_image_url_allow_list(self):
        assert is_valid_image_url("https://res.cloudinary.com/demo/photo.jpg")
        assert not is_valid_image_url("http://res.cloudinary.com/demo/photo.jpg")
        assert not is_valid_image_url("https://example.com/photo.jpg")
        assert not is_valid_image_url("https://127.0.0.1/photo.jpg")

    def test_renders_shape_layer(self):
        result = asyncio.run(render_template(RED_CARD, RenderContext()))
        assert result.success is True
        assert (result.width, result.height) == (200, 100)
        image = Image.open(io.BytesIO(result.image_bytes))
        assert image.format == "PNG"
        assert image.getpixel((50, 50)) == (255, 0, 0, 255)

    def test_size_override_and_jpeg(self):
        result = asyncio.run(render_template(RED_CARD, RenderContext(), "jpeg", 80, width=300, height=150))
        assert Image.open(io.BytesIO(result.image_bytes)).size == (300, 150)

    def test_missing_template(self):
        result = asyncio.run(render_template(None, RenderContext()))
        assert result.success is False
        assert result.error == "Template is required"

    def test_compositing_runs_off_the_event_loop(self, monkeypatch):
        threads = []
        compose = renderer._compose

        def recording_compose(*args):
            threads.append(threading.get_ident())
            return compose(*args)

        monkeypatch.setattr(renderer, "_compose", recording_compose)

        async def render():
            return threading.get_ident(), await render_template(RED_CARD, RenderContext())

        loop_thread, result = asyncio.run(render())
        assert result.success is True
        assert len(threads) == 1
        assert threads[0] != loop_thread


# ============================================================================
# AUTH
# ============================================================================


class TestRenderAuth:
    def test_missing_secret(self, client):
        response = client.post("/api/v1/render/image", json={"template": RED_CARD})
        assert response.status_code == 401
        assert response.json() == {"error": "Missing authentication header"}

    def test_wrong_secret(self, client):
        response = client.post("/api/v1/render/image", json={"template": RED_CARD}, headers={"x-asm-secret": "nope"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid authentication"}

    def test_health_is_public(self, client):
        assert client.get("/api/v1/render/image").json() == {"status": "ok", "engine": "pillow", "version": "1.0.0"}
        assert client.get("/api/v1/render/carousel").json()["maxSlides"] == 10


# ============================================================================
# IMAGE + JOBS
# ============================================================================


class TestRenderImage:
    def test_inline_template(self, client, render_headers, uploads):
        response = client.post("/api/v1/render/image", json={"template": RED_CARD}, headers=render_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["metadata"]["width"] == 200
        assert body["metadata"]["engine"] == "pillow"
        assert body["outputUrl"] == f"https://cdn.test/renders/{body['jobId']}.png"
        assert "X-RateLimit-Limit" in response.headers

        image = Image.open(io.BytesIO(uploads[f"renders/{body['jobId']}.png"]))
        assert image.size == (200, 100)

        job = client.get(f"/api/v1/render/job/{body['jobId']}", headers=render_headers).json()
        assert job["status"] == "completed"
        assert job["success"] is True
        assert job["outputUrls"] == [body["outputUrl"]]

    def test_requires_template_source(self, client, render_headers):
        response = client.post("/api/v1/render/image", json={"variables": {}}, headers=render_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"
        assert response.json()["details"]

    def test_unknown_template_slug(self, client, render_headers, uploads):
        response = client.post("/api/v1/render/image", json={"templateSlug": "ghost"}, headers=render_headers)
        assert response.status_code == 404
        assert response.json() == {"error": "Template not found"}

    def test_upload_failure_marks_job_failed(self, client, db, render_headers, monkeypatch):
        def broken_upload(*args, **kwargs):
            raise RuntimeError("bucket down")

        monkeypatch.setattr(render_service, "upload_bytes", broken_upload)
        response = client.post("/api/v1/render/image", json={"template": RED_CARD}, headers=render_headers)
        assert response.status_code == 500
        assert response.json()["error"] == "Render failed"
        job = db.query(RenderJob).one()
        assert job.status == "failed"
        assert job.error_message == "bucket down"

    def test_job_lookup_errors(self, client, render_headers):
        assert client.get("/api/v1/render/job/not-a-uuid", headers=render_headers).json() == {
            "error": "Invalid job ID format"
        }
        response = client.get("/api/v1/render/job/00000000-0000-4000-8000-000000000000", headers=render_headers)
        assert response.status_code == 404
        assert response.json() == {"error": "Job not found"}


class TestCarousel:
    def test_partial_when_some_slides_fail(self, client, render_headers, uploads):
        payload = {
            "slides": [
                {"position": 1, "templateSlug": "ghost"},
                {"position": 0, "template": RED_CARD},
            ],
            "parallel": False,
        }
        response = client.post("/api/v1/render/carousel", json=payload, headers=render_headers)
        assert response.status_code == 200
        body = response.json()
        assert "error" not in body
        assert [s["position"] for s in body["slides"]] == [0, 1]
        assert body["slides"][0]["success"] is True
        assert body["slides"][1]["error"] == "Template not found"
        assert body["metadata"]["slidesRendered"] == 1
        assert body["metadata"]["slidesFailed"] == 1

        job = client.get(f"/api/v1/render/job/{body['jobId']}", headers=render_headers).json()
        assert job["status"] == "partial"
        assert job["success"] is True
        assert job["metadata"]["slidesTotal"] == 2
        assert job["metadata"]["slidesCompleted"] == 1

    def test_all_slides_failing_is_500(self, client, render_headers, uploads):
        payload = {"slides": [{"position": 0, "templateSlug": "ghost"}]}
        response = client.post("/api/v1/render/carousel", json=payload, headers=render_headers)
        assert response.status_code == 500
        assert response.json()["error"] == "All slides failed to render"

    def test_too_many_slides(self, client, render_headers):
        payload = {"slides": [{"position": i % 10, "template": RED_CARD} for i in range(11)]}
        response = client.post("/api/v1/render/carousel", json=payload, headers=render_headers)
        assert response.status_code == 400


# ============================================================================
# TEMPLATES
# ============================================================================


def template_payload(slug="just-listed", **extra):
    return {
        "slug": slug,
        "name": "Just Listed",
        "category": "listing_marketing",
        "status": "published",
        "canvas": {"width": 200, "height": 100, "backgroundColor": "#ffffff"},
        "layers": [
            {
                "id": "headline",
                "type": "text",
                "position": {"x": 10, "y": 10, "width": 180, "height": 40},
                "content": {"text": "{{formatPrice price}}", "fontSize": 20, "color": "#000000"},
            }
        ],
        "variables": [{"name": "price", "type": "number", "required": True}],
        **extra,
    }


class TestTemplates:
    def test_create_and_render_by_slug(self, client, render_headers, uploads):
        response = client.post("/api/v1/render/template", json=template_payload(), headers=render_headers)
        assert response.status_code == 201
        template = response.json()["template"]
        assert template["slug"] == "just-listed"
        assert template["version"] == "1.0.0"

        rendered = client.post(
            "/api/v1/render/image",
            json={"templateSlug": "just-listed", "variables": {"price": 525000}},
            headers=render_headers,
        )
        assert rendered.status_code == 200

        fetched = client.get("/api/v1/render/template/just-listed", headers=render_headers).json()
        assert fetched["template"]["id"] == template["id"]

    def test_duplicate_version_conflicts(self, client, render_headers):
        client.post("/api/v1/render/template", json=template_payload(), headers=render_headers)
        response = client.post("/api/v1/render/template", json=template_payload(), headers=render_headers)
        assert response.status_code == 409
        assert response.json() == {"error": "Template just-listed version 1.0.0 already exists"}

    def test_invalid_slug(self, client, render_headers):
        response = client.post(
            "/api/v1/render/template", json=template_payload(slug="Bad Slug"), headers=render_headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid template data"

    def test_list_filters(self, client, render_headers):
        client.post("/api/v1/render/template", json=template_payload(), headers=render_headers)
        client.post(
            "/api/v1/render/template",
            json=template_payload(slug="story-open", category="story_archetype", status="draft"),
            headers=render_headers,
        )
        body = client.get(
            "/api/v1/render/template", params={"category": "story_archetype"}, headers=render_headers
        ).json()
        assert [t["slug"] for t in body["templates"]] == ["story-open"]
        assert body["pagination"] == {"limit": 50, "offset": 0, "total": 1}

    def test_resolved_inheritance(self, client, render_headers):
        client.post("/api/v1/render/template", json=template_payload(slug="base-card"), headers=render_headers)
        child = template_payload(
            slug="open-house",
            extends="base-card",
            layers=[
                {
                    "id": "badge",
                    "type": "shape",
                    "position": {"x": 0, "y": 0, "width": 50, "height": 20},
                    "content": {"fill": "#ff6b00"},
                }
            ],
        )
        client.post("/api/v1/render/template", json=child, headers=render_headers)

        plain = client.get("/api/v1/render/template/open-house", headers=render_headers).json()["template"]
        resolved = client.get(
            "/api/v1/render/template/open-house", params={"resolved": "true"}, headers=render_headers
        ).json()["template"]
        assert [layer["id"] for layer in plain["layers"]] == ["badge"]
        assert [layer["id"] for layer in resolved["layers"]] == ["headline", "badge"]

    def test_self_extends_is_rejected(self, client, render_headers):
        response = client.post(
            "/api/v1/render/template", json=template_payload(slug="loop", extends="loop"), headers=render_headers
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Template inheritance cycle: loop -> loop"}

    def test_missing_parent_is_rejected(self, client, render_headers):
        response = client.post(
            "/api/v1/render/template", json=template_payload(slug="orphan", extends="ghost"), headers=render_headers
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Parent template ghost not found"}

    def test_update_creating_cycle_is_rejected(self, client, render_headers):
        base = client.post(
            "/api/v1/render/template", json=template_payload(slug="base-card"), headers=render_headers
        ).json()["template"]
        client.post(
            "/api/v1/render/template",
            json=template_payload(slug="open-house", extends="base-card"),
            headers=render_headers,
        )
        response = client.put(
            f"/api/v1/render/template/{base['id']}", json={"extends": "open-house"}, headers=render_headers
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Template inheritance cycle: base-card -> open-house -> base-card"}
        fetched = client.get(f"/api/v1/render/template/{base['id']}", headers=render_headers).json()
        assert fetched["template"]["extends"] is None

    def test_inheritance_depth_is_limited(self, client, render_headers):
        for level in range(6):
            extends = {"extends": f"level-{level - 1}"} if level else {}
            payload = template_payload(slug=f"level-{level}", **extends)
            response = client.post("/api/v1/render/template", json=payload, headers=render_headers)
            assert response.status_code == 201

        response = client.post(
            "/api/v1/render/template", json=template_payload(slug="level-6", extends="level-5"), headers=render_headers
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Template inheritance exceeds maximum depth of 5"}

    def test_update_requires_uuid(self, client, render_headers):
        response = client.put("/api/v1/render/template/just-listed", json={"name": "New"}, headers=render_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Template ID must be a UUID for updates"}

    def test_update(self, client, render_headers):
        created = client.post("/api/v1/render/template", json=template_payload(), headers=render_headers).json()
        template_id = created["template"]["id"]
        response = client.put(
            f"/api/v1/render/template/{template_id}",
            json={"name": "Just Sold", "status": "archived"},
            headers=render_headers,
        )
        assert response.json()["template"]["name"] == "Just Sold"
        assert response.json()["template"]["status"] == "archived"

    def test_system_templates_are_protected(self, client, db, render_headers):
        template = RenderTemplate(slug="system-base", name="System", category="social_post", is_system=True)
        db.add(template)
        db.commit()
        response = client.delete(f"/api/v1/render/template/{template.id}", headers=render_headers)
        assert response.status_code == 403
        assert response.json() == {"error": "Cannot delete system templates"}

    def test_delete_blocked_by_children(self, client, render_headers):
        parent = client.post(
            "/api/v1/render/template", json=template_payload(slug="base-card"), headers=render_headers
        ).json()["template"]
        client.post(
            "/api/v1/render/template",
            json=template_payload(slug="open-house", extends="base-card"),
            headers=render_headers,
        )
        response = client.delete(f"/api/v1/render/template/{parent['id']}", headers=render_headers)
        assert response.status_code == 409

    def test_delete(self, client, render_headers):
        created = client.post("/api/v1/render/template", json=template_payload(), headers=render_headers).json()
        template_id = created["template"]["id"]
        response = client.delete(f"/api/v1/render/template/{template_id}", headers=render_headers)
        assert response.json() == {"success": True, "deletedId": template_id}
        assert client.get(f"/api/v1/render/template/{template_id}", headers=render_headers).status_code == 404
