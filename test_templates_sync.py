import httpx
import pytest

from conftest import ACCESS_TOKEN, PHONE_ID
from dashboard.schemas import CredentialContext
from dashboard.whatsapp.templates import extract_placeholders, sync_templates

CREDENTIALS = CredentialContext(access_token=ACCESS_TOKEN, phone_number_id=PHONE_ID)

TEMPLATES = {
    "data": [
        {
            "id": "111",
            "name": "order_update",
            "status": "APPROVED",
            "category": "UTILITY",
            "language": "en_US",
            "components": [
                {"type": "HEADER", "format": "TEXT", "text": "Order"},
                {"type": "BODY", "text": "Hi {{1}}, your order {{2}} ships {{1}}"},
            ],
        },
        {"id": "222", "name": "pending_promo", "status": "PENDING", "components": [{"type": "BODY", "text": "{{1}}"}]},
        {"id": "333", "name": "rejected_promo", "status": "REJECTED", "components": []},
        {"id": "444", "name": "plain", "status": "APPROVED", "category": "MARKETING", "language": "pt_BR", "components": []},
    ]
}


def graph_api(phone_lookup=None, template_list=None):
    """Routes requests the way Meta would for a phone lookup and a template listing."""
    def respond(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/v21.0/{PHONE_ID}":
            return phone_lookup or httpx.Response(200, json={"id": PHONE_ID, "whatsapp_business_account_id": "WABA_999"})
        if request.url.path.endswith("/message_templates"):
            return template_list or httpx.Response(200, json=TEMPLATES)
        return httpx.Response(404, json={"error": {"message": "Unknown path"}})
    return respond

# --- PLACEHOLDERS ---

def test_extract_placeholders_keeps_duplicates_and_order():
    assert extract_placeholders("Hi {{1}}, your order {{2}} ships {{1}}") == ["1", "2", "1"]

@pytest.mark.parametrize("text", ["", None, "No variables here", "{{name}} and {{ 1 }}"])
def test_extract_placeholders_ignores_non_positional(text):
    assert extract_placeholders(text) == []

# --- SYNC ---

@pytest.mark.asyncio
async def test_sync_looks_up_business_account_then_filters_approved(provider):
    meta = provider(graph_api())

    result = await sync_templates(meta.client(), CREDENTIALS)

    assert result.success is True
    assert [t.name for t in result.templates] == ["order_update", "plain"]
    first = result.templates[0]
    assert first.provider_template_id == "111"
    assert first.category == "UTILITY"
    assert first.body_text == "Hi {{1}}, your order {{2}} ships {{1}}"
    assert first.variable_placeholders == ["1", "2", "1"]
    assert first.is_approved is True
    assert result.templates[1].language == "pt_BR"
    assert result.templates[1].body_text == ""

    lookup, listing = meta.requests
    assert lookup.url.path == f"/v21.0/{PHONE_ID}"
    assert listing.url.path == "/v21.0/WABA_999/message_templates"
    assert listing.url.params["limit"] == "100"
    assert listing.headers["Authorization"] == f"Bearer {ACCESS_TOKEN}"

@pytest.mark.asyncio
async def test_sync_uses_stored_business_account_id(provider):
    meta = provider(graph_api())
    credentials = CredentialContext(access_token=ACCESS_TOKEN, phone_number_id=PHONE_ID, business_account_id="WABA_STORED")

    result = await sync_templates(meta.client(), credentials)

    assert result.success is True
    assert [r.url.path for r in meta.requests] == ["/v21.0/WABA_STORED/message_templates"]

@pytest.mark.asyncio
async def test_sync_lookup_failure_short_circuits(provider):
    meta = provider(graph_api(phone_lookup=httpx.Response(400, json={"error": {"message": "Unsupported get request"}})))

    result = await sync_templates(meta.client(), CREDENTIALS)

    assert result.success is False
    assert result.templates is None
    assert result.error == "Unsupported get request"
    assert len(meta.requests) == 1

@pytest.mark.asyncio
async def test_sync_lookup_without_account_id_fails(provider):
    meta = provider(graph_api(phone_lookup=httpx.Response(200, json={"id": PHONE_ID})))

    result = await sync_templates(meta.client(), CREDENTIALS)

    assert result.success is False
    assert "Business Account ID" in result.error

@pytest.mark.asyncio
async def test_sync_template_fetch_failure_returns_nothing(provider):
    meta = provider(graph_api(template_list=httpx.Response(500, text="boom")))

    result = await sync_templates(meta.client(), CREDENTIALS)

    assert result.success is False
    assert result.templates is None
    assert result.error == "HTTP 500: Internal Server Error"

@pytest.mark.asyncio
async def test_sync_malformed_template_list(provider):
    meta = provider(graph_api(template_list=httpx.Response(200, json={"paging": {}})))

    result = await sync_templates(meta.client(), CREDENTIALS)

    assert result.success is False

@pytest.mark.asyncio
async def test_sync_network_error(provider):
    def refuse(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    result = await sync_templates(provider(refuse).client(), CREDENTIALS)

    assert result.success is False
    assert result.error == "Name or service not known"

@pytest.mark.asyncio
async def test_sync_without_credentials_makes_no_request(provider):
    meta = provider(graph_api())

    result = await sync_templates(meta.client(), CredentialContext(phone_number_id=PHONE_ID))

    assert result.success is False
    assert result.error == "WhatsApp credentials not configured"
    assert meta.requests == []
