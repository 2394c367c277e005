"""Operator configuration read from the environment with pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from identity_claim_operator.constants import (
    DEFAULT_ISSUER_GROUP,
    DEFAULT_ISSUER_KIND,
    DEFAULT_ISSUER_NAME,
    DEFAULT_TRUST_DOMAIN,
)


class Settings(BaseSettings):
    """Environment driven configuration.

    Each field names the variable it is read from. A ``.env`` file in the
    working directory is honoured for local runs.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    operator_name: str = Field(
        default="identity-claim-operator",
        validation_alias="OPERATOR_NAME",
        description="Deployment name, also the kopf peering object name",
    )

    # SPIFFE identities and issuing
    trust_domain: str = Field(
        default=DEFAULT_TRUST_DOMAIN,
        validation_alias="TRUST_DOMAIN",
        description="Trust domain placed in every spiffe:// identity URI",
    )
    default_issuer_name: str = Field(
        default=DEFAULT_ISSUER_NAME,
        validation_alias="DEFAULT_ISSUER_NAME",
        description="cert-manager issuer for claims without an issuerRef",
    )
    default_issuer_kind: str = Field(
        default=DEFAULT_ISSUER_KIND,
        validation_alias="DEFAULT_ISSUER_KIND",
        description="Issuer or ClusterIssuer",
    )
    default_issuer_group: str = Field(
        default=DEFAULT_ISSUER_GROUP,
        validation_alias="DEFAULT_ISSUER_GROUP",
    )

    # Scope
    namespaces: str = Field(
        default="",
        validation_alias="IDENTITY_OPERATOR_NAMESPACES",
        description="Comma separated namespaces to watch, all when empty",
    )

    # Logs
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="One JSON object per log line instead of plain text",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Tag log lines with the ID of the reconcile pass",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Keep access log lines of /healthz and /metrics",
    )

    # Prometheus endpoint
    metrics_port: int = Field(default=8081, validation_alias="METRICS_PORT")
    metrics_host: str = Field(default="0.0.0.0", validation_alias="METRICS_HOST")

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Namespaces listed in IDENTITY_OPERATOR_NAMESPACES, None for all."""
        names = [part.strip() for part in self.namespaces.split(",")]
        return [name for name in names if name] or None


settings = Settings()
