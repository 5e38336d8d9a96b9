import base64
from urllib.parse import parse_qs, urlparse

import pytest

from services.ticketing.services import qr_image_service
from services.ticketing.tasks import qr_tasks
from shared.utils.qr_generator import build_qr_image_url, render_qr_png

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def test_build_qr_image_url_defaults():
    url = build_qr_image_url('{"ticketId":"T1","eventName":"Expo"}')
    params = parse_qs(urlparse(url).query)

    assert url.startswith("https://api.qrserver.com/v1/create-qr-code/?")
    assert params["data"] == ['{"ticketId":"T1","eventName":"Expo"}']
    assert params["size"] == ["200x200"]
    assert params["color"] == ["000000"]
    assert params["bgcolor"] == ["FFFFFF"]
    assert params["margin"] == ["2"]
    assert params["qzone"] == ["1"]
    assert params["format"] == ["png"]
    assert params["ecc"] == ["M"]


def test_build_qr_image_url_options():
    params = parse_qs(urlparse(build_qr_image_url("T1", size=300, color="#1a2b3c", ecc="h")).query)
    assert params["size"] == ["300x300"]
    assert params["color"] == ["1A2B3C"]
    assert params["ecc"] == ["H"]


@pytest.mark.parametrize("kwargs", [{"color": "zzzzzz"}, {"bg_color": "#fff"}, {"ecc": "X"}])
def test_build_qr_image_url_rejects_bad_options(kwargs):
    with pytest.raises(ValueError):
        build_qr_image_url("T1", **kwargs)


def test_render_qr_png():
    png = render_qr_png('{"ticketId":"T1","eventName":"Expo"}')
    assert png.startswith(PNG_MAGIC)


async def test_get_qr_png_renders_once_then_uses_cache(fake_cache, monkeypatch):
    calls = {"n": 0}
    real_render = qr_image_service.render_qr_png

    def counting_render(payload):
        calls["n"] += 1
        return real_render(payload)

    monkeypatch.setattr(qr_image_service, "render_qr_png", counting_render)

    first = await qr_image_service.get_qr_png("t-1", "payload")
    second = await qr_image_service.get_qr_png("t-1", "payload")

    assert first == second
    assert first.startswith(PNG_MAGIC)
    assert calls["n"] == 1
    assert base64.b64decode(fake_cache.data["ticket:qr:t-1"]) == first


async def test_get_qr_png_without_cache(fake_cache):
    fake_cache.fail = True
    png = await qr_image_service.get_qr_png("t-1", "payload")
    assert png.startswith(PNG_MAGIC)


def test_generate_ticket_qr_task_caches_image(fake_cache):
    result = qr_tasks.generate_ticket_qr_task.run("t-9", '{"ticketId":"t-9","eventName":"Expo"}')

    assert result["ticket_id"] == "t-9"
    assert result["cached"] is True
    assert base64.b64decode(fake_cache.data["ticket:qr:t-9"]).startswith(PNG_MAGIC)


def test_enqueue_qr_prerender(monkeypatch):
    queued = []
    monkeypatch.setattr(qr_tasks.generate_ticket_qr_task, "delay", lambda *args: queued.append(args))

    class _Ticket:
        def __init__(self, ticket_id):
            self.id = ticket_id
            self.qr_payload = f"payload-{ticket_id}"

    assert qr_tasks.enqueue_qr_prerender([_Ticket("a"), _Ticket("b")]) == 2
    assert queued == [("a", "payload-a"), ("b", "payload-b")]
