# models.py
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

PIVOT_YEAR_TAG = "Pivot Year"


class DeliveryOption(str, Enum):
    EMAIL = "Email"
    TEXT = "Text"
    BOTH = "Both"


class SubscribeRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    firstName: Optional[str] = None
    lastName: Optional[str] = None
    emailAddress: Optional[str] = None
    phoneNumber: Optional[str] = None
    DeliveryPreference: Optional[str] = None
    CampaignInterest: Optional[str] = None
    source: Optional[str] = None

    def email(self) -> str:
        return (self.emailAddress or "").strip()

    def delivery(self) -> Optional[str]:
        """The delivery preference if it is one of Email, Text or Both, else None."""
        allowed = {p.value for p in DeliveryOption}
        if self.DeliveryPreference in allowed:
            return self.DeliveryPreference
        return None

    def tags(self) -> List[str]:
        if not self.CampaignInterest:
            return []
        return [tag.strip() for tag in self.CampaignInterest.split(",") if tag.strip()]


class SurveyRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    email: Optional[str] = None
    checkOnly: Optional[bool] = False
    response: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("response", "whysubscribe")
    )
