"""Mirror configuration models and YAML loading with Pydantic validation."""

import os
import re
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError

CONFIG_VERSION = 1


class GitHubSettings(BaseModel):
    """Source provider credentials and discovery toggles."""

    username: str = Field("", description="GitHub login the token belongs to")
    token: str = Field("", description="GitHub personal access token")
    api_url: str = Field("https://api.github.com", description="GitHub API base URL")
    skip_forks: bool = False
    private_repositories: bool = False
    mirror_issues: bool = False
    mirror_starred: bool = False
    mirror_organizations: bool = False
    only_mirror_orgs: bool = False
    include_orgs: List[str] = Field(default_factory=list)
    exclude_orgs: List[str] = Field(default_factory=list)
    preserve_org_structure: bool = False
    skip_starred_issues: bool = False


class GiteaSettings(BaseModel):
    """Destination forge credentials and placement defaults."""

    url: str = Field(..., description="Gitea base URL, e.g. https://git.example.com")
    token: str = Field("", description="Gitea access token")
    organization: Optional[str] = Field(None, description="Default destination organization")
    visibility: Literal["public", "private", "limited"] = "public"
    starred_repos_org: Optional[str] = Field("github", description="Organization for starred repos")
    wait_for_clone: bool = Field(False, description="Poll until the server-side clone finishes")
    clone_timeout: float = Field(300.0, gt=0, description="Seconds to wait for a clone")

    @field_validator("url")
    @classmethod
    def normalize_url(cls, v: str) -> str:
        """Strip trailing slashes and require an http(s) scheme."""
        v = v.strip().rstrip("/")
        if v and not re.match(r"^https?://", v):
            raise ValueError(f"url must start with http:// or https://, got '{v}'")
        return v

    @field_validator("organization", "starred_repos_org")
    @classmethod
    def empty_as_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class ScheduleSettings(BaseModel):
    """Periodic sync+mirror schedule."""

    enabled: bool = False
    interval: int = Field(3600, ge=1, description="Seconds between runs")
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None

    def compute_next_run(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.interval)


class MirrorConfig(BaseModel):
    """The active mirror configuration for one user.

    Passed explicitly into every core call; nothing reads it from
    ambient state.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    version: int = CONFIG_VERSION
    name: str = "default"
    user_id: Optional[str] = None
    is_active: bool = True
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    gitea: GiteaSettings
    include: List[str] = Field(default_factory=lambda: ["*"])
    exclude: List[str] = Field(default_factory=list)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    request_timeout: float = Field(60.0, gt=0, description="Seconds before an HTTP call is abandoned")
    claim_timeout: float = Field(
        3600.0,
        gt=0,
        description="Seconds after which a repository stuck in mirroring or syncing is reclaimed",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v > CONFIG_VERSION:
            raise ValueError(f"unsupported config version {v} (newest known: {CONFIG_VERSION})")
        return v


def migrate_config(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Upgrade a raw configuration mapping to the current version.

    Version 0 documents (no ``version`` key) kept ``preserve_org_structure``
    and ``starred_repos_org`` in the gitea section and used camelCase keys.

    Args:
        data: Raw configuration mapping

    Returns:
        Mapping in the current version's shape
    """
    data = dict(data)
    version = data.get("version", 0)
    if version == 0:
        github = dict(data.get("github") or {})
        gitea = dict(data.get("gitea") or {})
        for section in (github, gitea):
            for key in list(section):
                snake = re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()
                if snake != key:
                    section[snake] = section.pop(key)
        if "preserve_org_structure" in gitea:
            github.setdefault("preserve_org_structure", gitea.pop("preserve_org_structure"))
        data["github"] = github
        data["gitea"] = gitea
        data["version"] = CONFIG_VERSION
    return data


def stable_config_id(name: str) -> str:
    """Derive a configuration id from its name, so file-based configs keep their id across runs."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"gitea-mirror:config:{name}"))


def validate_for_mirroring(config: MirrorConfig) -> None:
    """
    Fail fast when a configuration cannot drive a mirror job.

    Args:
        config: Configuration to check

    Raises:
        ValidationError: If a required URL or token is missing
    """
    missing = []
    if not config.github.token:
        missing.append("github.token")
    if not config.gitea.url:
        missing.append("gitea.url")
    if not config.gitea.token:
        missing.append("gitea.token")
    if missing:
        raise ValidationError(
            f"Configuration '{config.name}' is missing required fields: {', '.join(missing)}",
            config_id=config.id,
            missing=missing,
        )


class ConfigLoader:
    """Load and validate mirror configuration from YAML files."""

    def _substitute_env_vars(self, value: Any) -> Any:
        """
        Recursively substitute environment variables in configuration values.

        Supports patterns:
        - ${VAR} - Replace with environment variable value (raises error if not set)
        - ${VAR:-default} - Replace with VAR or use default if not set
        - $$ - Escape sequence for literal $

        Raises:
            ValidationError: If a required environment variable is not set
        """
        if isinstance(value, str):
            result = value.replace("$$", "\x00")

            def replace_var(match: "re.Match[str]") -> str:
                var_with_default = match.group(1)

                if ":-" in var_with_default:
                    var_name, default_value = var_with_default.split(":-", 1)
                    env_value = os.environ.get(var_name)
                    if env_value is None or env_value == "":
                        return default_value
                    return env_value

                env_value = os.environ.get(var_with_default)
                if env_value is None:
                    raise ValidationError(
                        f"Required environment variable '{var_with_default}' is not set"
                    )
                return env_value

            result = re.sub(r"\$\{([^}]+)\}", replace_var, result)
            return result.replace("\x00", "$")

        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}

        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]

        return value

    def load_from_dict(self, raw_config: Dict[str, Any]) -> MirrorConfig:
        """
        Validate a configuration mapping.

        Raises:
            ValidationError: If configuration validation fails
        """
        if not isinstance(raw_config, dict):
            raise ValidationError("Configuration must be a mapping")

        substituted = self._substitute_env_vars(migrate_config(raw_config))
        substituted.setdefault("id", stable_config_id(substituted.get("name") or "default"))
        try:
            return MirrorConfig(**substituted)
        except PydanticValidationError as e:
            raise ValidationError(f"Configuration validation failed: {e}") from e

    def load_from_file(self, file_path: str) -> MirrorConfig:
        """
        Load configuration from a YAML file with validation.

        Args:
            file_path: Path to YAML configuration file

        Returns:
            Validated MirrorConfig

        Raises:
            ValidationError: If the file is missing, unparsable or invalid
        """
        config_path = Path(file_path)

        if not config_path.exists():
            raise ValidationError(f"Configuration file not found: {file_path}")

        try:
            with open(config_path, "r") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid YAML in {file_path}: {e}") from e

        return self.load_from_dict(raw_config or {})
