from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_env: Literal["development", "production", "test"] = "production"
    env_name: str = Field(default="prod", alias="ENV_NAME")
    log_level: str = "INFO"
    log_json: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173", "http://localhost:32000"])
    frontend_url: str | None = Field(default=None, alias="FRONTEND_URL")

    # Management cluster (hosts Karmada and this service)
    kube_config_path: str | None = Field(default=None, alias="KUBE_CONFIG_PATH")
    kube_context: str | None = None
    in_cluster: bool = False

    # Karmada API server
    karmada_kubeconfig: str | None = None
    karmada_context: str | None = None
    karmada_apiserver: str | None = Field(default=None, description="Used with the stored service-account token when no kubeconfig is given")
    karmada_skip_tls_verify: bool = False
    karmada_namespace: str = "karmada-system"

    cache_ttl_seconds: int = 30
    rate_limit_requests_per_minute: int = 600
    member_client_ttl_seconds: int = 300

    # Auth/JWT settings
    jwt_secret: str = Field(default="default-karmada-dashboard-secret-key", alias="KARMADA_DASHBOARD_JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_expire_hours: int = 24
    jwt_issuer: str = "karmada-dashboard-api"
    admin_password: str = Field(default="admin123", alias="KARMADA_DASHBOARD_ADMIN_PASSWORD")
    admin_email: str = "admin@example.com"

    # etcd (users, settings, service-account token)
    etcd_endpoint: str | None = Field(default=None, alias="ETCD_ENDPOINT")
    etcd_host: str = "etcd.karmada-system"
    etcd_port: int = 2379
    etcd_timeout_seconds: float = 5.0
    etcd_retries: int = 3
    etcd_verify_tls: bool = False

    # Keycloak
    keycloak_enabled: bool = False
    keycloak_url: str = Field(default="http://keycloak.ml-platform-system.svc:8080", alias="KEYCLOAK_URL")
    keycloak_realm_override: str | None = Field(default=None, alias="KEYCLOAK_REALM")
    keycloak_client_id: str = Field(default="ml-platform-admin", alias="KEYCLOAK_CLIENT_ID")
    keycloak_client_secret: str | None = Field(default=None, alias="KEYCLOAK_CLIENT_SECRET")

    # OpenFGA
    openfga_api_url: str | None = None
    openfga_store_name: str = "ml-platform-admin"

    # Porch
    porch_api_url: str | None = None
    porch_skip_tls_verify: bool = False
    porch_service_account: str = "karmada-dashboard"
    porch_service_account_namespace: str = "karmada-system"
    porch_namespace: str = "default"

    # Settings persisted in ConfigMaps on the management cluster
    dashboard_configmap: str = "karmada-dashboard-configmap"
    monitoring_configmap: str = "ml-platform-admin-configmap"
    settings_namespace: str = "karmada-system"

    # Cloud credentials live on the management cluster, backup objects on Karmada
    cloud_credentials_namespace: str = "ml-platform-system"
    backup_namespace: str = "stateful-migration"

    # Optional Fernet key for encrypting the stored service-account token
    fernet_key: str | None = None

    @computed_field
    @property
    def is_debug(self) -> bool:
        return self.app_env == "development"

    @computed_field
    @property
    def keycloak_realm(self) -> str:
        if self.keycloak_realm_override:
            return self.keycloak_realm_override
        return "ml-platform-dev" if self.env_name == "dev" else "ml-platform"

    @computed_field
    @property
    def frontend_base_url(self) -> str:
        if self.frontend_url:
            return self.frontend_url.rstrip("/")
        if self.env_name == "dev":
            return "http://192.168.40.248:5173"
        return "http://localhost:32000"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
