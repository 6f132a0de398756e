import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from config import Settings, load_settings
from models import PIVOT_YEAR_TAG, SubscribeRequest, SurveyRequest
from services import AirtableClient, EmailOctopusClient, MailerSendClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SURVEY_PATH = "/api/whysubscribe"
SURVEY_FIELD = "whysubscribe"
DEFAULT_SOURCE = "Direct"
PENDING_STATUS = "Pending"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

router = APIRouter()


def json_response(body: Dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Access-Control-Allow-Origin": "*"})


def server_error() -> JSONResponse:
    return json_response({"error": "Internal Server Error"}, 500)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_http_client(request: Request):
    settings = request.app.state.settings
    async with httpx.AsyncClient(
        transport=request.app.state.transport, timeout=settings.http_timeout
    ) as client:
        yield client


def get_airtable(client: httpx.AsyncClient = Depends(get_http_client),
                 settings: Settings = Depends(get_settings)) -> AirtableClient:
    return AirtableClient(client, settings)


def get_octopus(client: httpx.AsyncClient = Depends(get_http_client),
                settings: Settings = Depends(get_settings)) -> EmailOctopusClient:
    return EmailOctopusClient(client, settings)


def get_mailer(client: httpx.AsyncClient = Depends(get_http_client),
               settings: Settings = Depends(get_settings)) -> MailerSendClient:
    return MailerSendClient(client, settings)


def record_fields(payload: SubscribeRequest, tags: List[str]) -> Dict[str, Any]:
    """Airtable fields carried by the payload; empty values are left out."""
    fields = {
        "First Name": payload.firstName,
        "Last Name": payload.lastName,
        "Email": payload.email(),
        "Phone number": payload.phoneNumber,
        "Delivery Preference": payload.delivery(),
    }
    fields = {key: value for key, value in fields.items() if value not in (None, "")}
    if tags:
        fields["Campaign Interest"] = tags
    return fields


def contact_fields(payload: SubscribeRequest, tags: List[str]) -> Dict[str, Any]:
    """EmailOctopus fields mirrored from the payload. Tags and status stay in Airtable."""
    fields = {
        "FirstName": payload.firstName,
        "LastName": payload.lastName,
        "Phone": payload.phoneNumber,
        "DeliveryPreference": payload.delivery(),
    }
    fields = {key: value for key, value in fields.items() if value}
    if PIVOT_YEAR_TAG in tags:
        fields["PivotYear"] = "yes"
    return fields


async def send_confirmation_email(mailer: MailerSendClient, settings: Settings, email: str,
                                  first_name: Optional[str]):
    if not settings.confirmation_enabled:
        return
    try:
        await mailer.send_template(
            email,
            first_name or "",
            settings.mailersend_template_id,
            {"name": first_name or "", "email": email},
        )
    except Exception as e:
        logger.error(f"Error sending confirmation email to {email}: {e}")


async def send_survey_alert(mailer: MailerSendClient, settings: Settings, email: str, text: str):
    if not settings.mailersend_api_key:
        logger.warning("MAILERSEND_API_KEY is not set, skipping WhySubscribe alert")
        return
    try:
        await mailer.send_text(
            settings.alert_email,
            settings.alert_name,
            f"New WhySubscribe response from {email}",
            f"The subscriber {email} just submitted the following response:\n\n{text}",
        )
    except Exception as e:
        logger.error(f"Error sending WhySubscribe alert for {email}: {e}")


async def mirror_contact(octopus: EmailOctopusClient, email: str, fields: Dict[str, Any]):
    try:
        contact = await octopus.get_contact(email)
        if contact:
            result = await octopus.update_contact(contact["id"], fields)
            logger.info(f"EmailOctopus contact updated: {result.get('id')}")
        else:
            result = await octopus.create_contact(email, fields)
            logger.info(f"EmailOctopus contact created: {result.get('id')}")
    except Exception as e:
        logger.error(f"Error mirroring {email} to EmailOctopus: {e}")


async def subscribe(payload: SubscribeRequest, airtable: AirtableClient, octopus: EmailOctopusClient,
                    mailer: MailerSendClient, settings: Settings) -> str:
    """Create or update the subscriber, mirror it to the mailing list.

    Returns "created" or "updated".
    """
    email = payload.email()
    tags = payload.tags()
    fields = record_fields(payload, tags)

    record = await airtable.find_by_email(email)
    if record is None:
        fields.update({
            "Subscribed Date": utc_now(),
            "Source": payload.source or DEFAULT_SOURCE,
            "Status": PENDING_STATUS,
        })
        result = await airtable.create(fields)
        logger.info(f"Airtable record created: {result.get('id')}")
        await send_confirmation_email(mailer, settings, email, payload.firstName)
        status = "created"
    else:
        result = await airtable.update(record["id"], fields)
        logger.info(f"Airtable record updated: {result.get('id')}")
        status = "updated"

    await mirror_contact(octopus, email, contact_fields(payload, tags))
    return status


async def record_survey(payload: SurveyRequest, airtable: AirtableClient, mailer: MailerSendClient,
                        settings: Settings) -> Dict[str, Any]:
    """Look the subscriber up and append the response to their record."""
    email = payload.email.strip()
    record = await airtable.find_by_email(email)
    if record is None:
        return {"found": False}
    if bool(payload.checkOnly):
        return {"found": True}
    if not payload.response:
        logger.info(f"Empty WhySubscribe response from {email}, nothing to append")
        return {"status": "submitted"}

    existing = record.get("fields", {}).get(SURVEY_FIELD) or ""
    entry = f"[{utc_now()}]\n{payload.response}"
    value = f"{existing}\n\n{entry}" if existing else entry
    result = await airtable.update(record["id"], {SURVEY_FIELD: value})
    logger.info(f"WhySubscribe response appended to {result.get('id')}")

    await send_survey_alert(mailer, settings, email, payload.response)
    return {"status": "submitted"}


@router.options("/{path:path}")
async def preflight(path: str):
    return Response(status_code=204, headers=CORS_HEADERS)


@router.post(SURVEY_PATH)
async def why_subscribe(request: Request,
                        airtable: AirtableClient = Depends(get_airtable),
                        mailer: MailerSendClient = Depends(get_mailer),
                        settings: Settings = Depends(get_settings)):
    try:
        payload = SurveyRequest.model_validate(await request.json())

        if not payload.email or not payload.email.strip():
            return json_response({"error": "Missing email"}, 400)

        return json_response(await record_survey(payload, airtable, mailer, settings))
    except Exception:
        logger.exception(f"Error in {SURVEY_PATH}")
        return server_error()


@router.post("/{path:path}")
async def subscribe_form(path: str, request: Request,
                         airtable: AirtableClient = Depends(get_airtable),
                         octopus: EmailOctopusClient = Depends(get_octopus),
                         mailer: MailerSendClient = Depends(get_mailer),
                         settings: Settings = Depends(get_settings)):
    try:
        payload = SubscribeRequest.model_validate(await request.json())

        logger.info(f"Incoming payload: {payload.model_dump(exclude_none=True)}")
        if not payload.email():
            return json_response({"error": "Missing emailAddress"}, 400)

        status = await subscribe(payload, airtable, octopus, mailer, settings)
        return json_response({"status": status})
    except Exception:
        logger.exception("Error processing subscribe request")
        return server_error()


def create_app(settings: Optional[Settings] = None,
               transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    app = FastAPI(title="Signup proxy")
    app.state.settings = settings or load_settings()
    app.state.transport = transport
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
