"""Build request and status schemas."""

import re
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from apk_forge.core.config import settings

PACKAGE_NAME_RE = re.compile(r"[a-z][a-z0-9]*(\.[a-z][a-z0-9]*){2,}")
VERSION_RE = re.compile(r"\d+\.\d+\.\d+")
MAX_VERSION_CODE = 2_100_000_000


class BuildStatus(str, Enum):
    """Build job status. Transitions only ever move forward."""
    QUEUED = "queued"
    BUILDING = "building"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BuildStatus.DONE, BuildStatus.FAILED)


class BuildRequest(BaseModel):
    """Parameters for one APK build."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    deployed_url: str = Field(alias="deployedUrl")
    app_name: str = Field(alias="appName", min_length=1, max_length=100)
    package_name: str = Field(alias="packageName")
    icon_url: Optional[str] = Field(default=None, alias="iconUrl")
    version: str
    version_code: int = Field(alias="versionCode", gt=0, le=MAX_VERSION_CODE)

    @field_validator("deployed_url")
    @classmethod
    def _check_deployed_url(cls, value: str) -> str:
        parsed = urlparse(value)
        host = parsed.hostname or ""
        if parsed.scheme != "https" or not host.endswith(settings.DEPLOY_HOST_SUFFIX):
            raise ValueError(f"Must be a *{settings.DEPLOY_HOST_SUFFIX} HTTPS URL")
        return value

    @field_validator("package_name")
    @classmethod
    def _check_package_name(cls, value: str) -> str:
        if not PACKAGE_NAME_RE.fullmatch(value):
            raise ValueError("Must be a valid Android applicationId (e.g. fun.buildsomething.myapp)")
        return value

    @field_validator("icon_url", mode="before")
    @classmethod
    def _check_icon_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        parsed = urlparse(value)
        if parsed.scheme != "https" or not parsed.hostname:
            raise ValueError("Icon URL must be an HTTPS URL")
        return value

    @field_validator("version_code", mode="before")
    @classmethod
    def _check_version_code_type(cls, value):
        # JSON numbers only; 1.0 passes through to int, 1.5 is rejected there
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("Must be an integer")
        return value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not VERSION_RE.fullmatch(value):
            raise ValueError("Must be semver (e.g. 1.0.0)")
        return value

    @property
    def artifact_filename(self) -> str:
        return f"{self.package_name}-{self.version}.apk"
