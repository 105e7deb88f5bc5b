from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EncryptedContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    data: str
    data_key: str = Field(alias="dataKey")
    data_signature: Optional[str] = Field(default=None, alias="dataSignature")
    encryption_certificate_id: Optional[str] = Field(default=None, alias="encryptionCertificateId")
    encryption_certificate_thumbprint: Optional[str] = Field(default=None, alias="encryptionCertificateThumbprint")


class NotificationEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
    change_type: Optional[str] = Field(default=None, alias="changeType")
    resource: Optional[str] = None
    encrypted_content: Optional[EncryptedContent] = Field(default=None, alias="encryptedContent")
    resource_data: Optional[Dict[str, Any]] = Field(default=None, alias="resourceData")


class NotificationBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    value: List[NotificationEntry] = Field(default_factory=list)


class FetchInsightsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    online_meeting_id: Optional[str] = Field(default=None, alias="onlineMeetingId")
    join_web_url: Optional[str] = Field(default=None, alias="joinWebUrl")


class IssueResponse(BaseModel):
    success: bool = True
    issue_url: str = Field(serialization_alias="issueUrl")
    issue_number: Optional[int] = Field(default=None, serialization_alias="issueNumber")
