import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    airtable_token: str
    airtable_base_id: str
    airtable_table_id: str
    eo_api_key: str
    eo_list_id: str
    mailersend_api_key: Optional[str] = None
    mailersend_template_id: Optional[str] = None
    mail_from_email: str = "no-reply@gr8terthings.com"
    mail_from_name: str = "Gr8terThings Alerts"
    alert_email: str = "info@gr8terthings.com"
    alert_name: str = "Gr8terThings"
    http_timeout: float = 10.0

    @property
    def confirmation_enabled(self) -> bool:
        return bool(self.mailersend_api_key and self.mailersend_template_id)


ENV_NAMES = {
    "airtable_token": "AIRTABLE_TOKEN",
    "airtable_base_id": "AIRTABLE_BASE_ID",
    "airtable_table_id": "AIRTABLE_TABLE_ID",
    "eo_api_key": "EO_API_KEY",
    "eo_list_id": "EO_LIST_ID",
    "mailersend_api_key": "MAILERSEND_API_KEY",
    "mailersend_template_id": "MAILERSEND_TEMPLATE_ID",
    "mail_from_email": "MAIL_FROM_EMAIL",
    "mail_from_name": "MAIL_FROM_NAME",
    "alert_email": "ALERT_EMAIL",
    "alert_name": "ALERT_NAME",
    "http_timeout": "HTTP_TIMEOUT",
}


def load_settings() -> Settings:
    """Read settings from the environment (and a .env file, if present).

    Raises pydantic.ValidationError when a required value is missing.
    """
    load_dotenv()
    values = {}
    for field, env_name in ENV_NAMES.items():
        value = os.environ.get(env_name)
        if value:
            values[field] = value
    return Settings(**values)
