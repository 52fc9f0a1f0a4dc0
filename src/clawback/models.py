"""
Pydantic models for everything clawback writes into an archive.

The manifest is the authoritative record of a snapshot; the
credential models describe secrets without ever holding their
values in plaintext form outside the encrypted vault.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, SecretStr

from . import FORMAT_VERSION


class FileCategory(str, Enum):
    """Semantic category of a workspace file."""

    IDENTITY = "identity"
    CONFIG = "config"
    SKILL = "skill"
    SCRIPT = "script"


class WorkspaceFile(BaseModel):
    """One real file under the workspace root."""

    path: str
    category: FileCategory
    size: int = 0


class AgentInfo(BaseModel):
    """Who the snapshot belongs to."""

    name: str = ""
    identity_hash: str = Field(
        default="", validation_alias=AliasChoices("identity_hash", "soul_hash")
    )


class SourceInfo(BaseModel):
    """Where the snapshot was taken."""

    hostname: str = ""
    os: str = ""
    arch: str = ""
    workspace: str = ""


class ContentCounts(BaseModel):
    """Per-category counters and totals."""

    identity_files: int = Field(
        default=0, validation_alias=AliasChoices("identity_files", "agent_files")
    )
    config_files: int = 0
    custom_skills: int = 0
    scripts: int = 0
    credentials: bool = False
    total_bytes: int = 0

    @property
    def total_files(self) -> int:
        """Number of files across all categories."""
        return self.identity_files + self.config_files + self.custom_skills + self.scripts


class Manifest(BaseModel):
    """The authoritative description of one snapshot.

    Invariants: ``checksums`` keys are exactly the set of ``files[].path``,
    ``contents`` counters equal the per-category file counts and
    ``contents.total_bytes`` equals the sum of file sizes. Call
    ``refresh_contents()`` after changing ``files``.
    """

    clawback_version: str = Field(
        default=FORMAT_VERSION,
        validation_alias=AliasChoices("clawback_version", "saddlebag_version", "version"),
    )
    created: str = ""
    agent: AgentInfo = Field(default_factory=AgentInfo)
    source: SourceInfo = Field(default_factory=SourceInfo)
    contents: ContentCounts = Field(default_factory=ContentCounts)
    checksums: dict[str, str] = Field(default_factory=dict)
    files: list[WorkspaceFile] = Field(default_factory=list)

    def refresh_contents(self) -> None:
        """Recompute counters and total size from ``files``."""
        counts = {category: 0 for category in FileCategory}
        for entry in self.files:
            counts[entry.category] += 1
        self.contents.identity_files = counts[FileCategory.IDENTITY]
        self.contents.config_files = counts[FileCategory.CONFIG]
        self.contents.custom_skills = counts[FileCategory.SKILL]
        self.contents.scripts = counts[FileCategory.SCRIPT]
        self.contents.total_bytes = sum(f.size for f in self.files)

    def find(self, path: str) -> Optional[WorkspaceFile]:
        """Return the file entry for a relative path, if listed."""
        for entry in self.files:
            if entry.path == path:
                return entry
        return None


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class CredentialSource(str, Enum):
    """Where a secret came from."""

    CONFIG = "gateway-config"
    ENV_FILE = "env-file"
    COOKIES = "cookies"
    OAUTH_TOKEN = "oauth-token"
    INCLUDED = "include-credential"


class ConfigSecret(BaseModel):
    """A secret value lifted out of the runtime config.

    The value is a SecretStr so it never shows up in a repr or log line.
    """

    name: str
    key_path: str
    value: SecretStr
    provider: Optional[str] = None
    required: bool = True


class CredentialFile(BaseModel):
    """A whole file that holds secrets."""

    name: str
    source: CredentialSource
    original_path: str
    required: bool = False


class CredentialRecord(BaseModel):
    """Public description of one secret (credentials-manifest.json entry)."""

    name: str
    source: CredentialSource
    required: bool = False
    original_path: Optional[str] = None
    key_path: Optional[str] = None


class CredentialManifest(BaseModel):
    """Inventory of the secrets sealed in the vault. Never holds values."""

    credentials: list[CredentialRecord] = Field(default_factory=list)


class VaultConfigValue(BaseModel):
    """A config secret as stored inside the vault plaintext."""

    name: str
    key_path: str
    value: str


class VaultFile(BaseModel):
    """A whole-file secret as stored inside the vault plaintext."""

    original_path: str
    data: str
    mode: int
    mtime_ms: float


class VaultPayload(BaseModel):
    """The plaintext structure that gets encrypted into credentials.age."""

    version: int = 1
    created: str = ""
    gateway: list[VaultConfigValue] = Field(default_factory=list)
    files: list[VaultFile] = Field(default_factory=list)
