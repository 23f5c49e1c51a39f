from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SourceType(str, Enum):
    ftp = "ftp"


class MappingKind(str, Enum):
    single = "single"
    derived_from_array = "derived_from_array"


class CustomAttributeMapping(BaseModel):
    source_key: str
    namespace: str = "custom"
    key: Optional[str] = None
    type: str = "single_line_text_field"
    mapping_kind: MappingKind = MappingKind.single
    array_key_source: Optional[str] = None
    array_value_source: Optional[str] = None


class FtpCredentials(BaseModel):
    host: str
    port: int = 21
    user: str = "anonymous"
    password: Optional[str] = None
    file_path: str
    data_path: Optional[str] = None


class SyncConfigRequest(BaseModel):
    name: str
    source_type: SourceType = SourceType.ftp
    credentials: FtpCredentials
    field_mapping: Dict[str, str] = Field(default_factory=dict)
    custom_attribute_mappings: List[CustomAttributeMapping] = Field(default_factory=list)
    sync_frequency_hours: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True


class SyncConfigUpdate(BaseModel):
    name: Optional[str] = None
    source_type: Optional[SourceType] = None
    credentials: Optional[FtpCredentials] = None
    field_mapping: Optional[Dict[str, str]] = None
    custom_attribute_mappings: Optional[List[CustomAttributeMapping]] = None
    sync_frequency_hours: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None
