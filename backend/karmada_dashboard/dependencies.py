from functools import lru_cache

from karmada_dashboard.config import get_settings
from karmada_dashboard.services.aggregation import AggregationService
from karmada_dashboard.services.argocd import ArgoCDService
from karmada_dashboard.services.backup import BackupService, RecoveryService, RegistryService
from karmada_dashboard.services.cloudcredentials import CloudCredentialService
from karmada_dashboard.services.clusters import ClusterService
from karmada_dashboard.services.etcd import EtcdClient
from karmada_dashboard.services.fga import FGAClient
from karmada_dashboard.services.keycloak import KeycloakClient
from karmada_dashboard.services.kube_client import ClientManager
from karmada_dashboard.services.monitoring import MonitoringService
from karmada_dashboard.services.overview import DashboardConfigStore, OverviewService
from karmada_dashboard.services.porch import PackageService, PorchService
from karmada_dashboard.services.resources import ResourceService
from karmada_dashboard.services.terminal import TerminalService
from karmada_dashboard.services.users import TokenStore, UserSettingStore, UserStore


# External stores and identity services
@lru_cache(maxsize=1)
def get_etcd_client() -> EtcdClient:
    return EtcdClient(get_settings())


@lru_cache(maxsize=1)
def get_fga_client() -> FGAClient:
    return FGAClient(get_settings())


@lru_cache(maxsize=1)
def get_keycloak_client() -> KeycloakClient:
    return KeycloakClient(get_settings())


@lru_cache(maxsize=1)
def get_user_store() -> UserStore:
    return UserStore(get_etcd_client())


@lru_cache(maxsize=1)
def get_setting_store() -> UserSettingStore:
    return UserSettingStore(get_etcd_client(), get_user_store(), get_fga_client())


@lru_cache(maxsize=1)
def get_token_store() -> TokenStore:
    return TokenStore(get_etcd_client(), get_settings())


# Kubernetes access
@lru_cache(maxsize=1)
def get_client_manager() -> ClientManager:
    return ClientManager(get_settings(), token_provider=get_token_store().get)


@lru_cache(maxsize=1)
def get_resource_service() -> ResourceService:
    return ResourceService(get_client_manager())


@lru_cache(maxsize=1)
def get_cluster_service() -> ClusterService:
    return ClusterService(get_client_manager(), get_fga_client(), get_user_store())


@lru_cache(maxsize=1)
def get_argocd_service() -> ArgoCDService:
    return ArgoCDService(get_client_manager())


@lru_cache(maxsize=1)
def get_aggregation_service() -> AggregationService:
    return AggregationService(get_client_manager(), get_cluster_service(), get_resource_service(), get_argocd_service())


@lru_cache(maxsize=1)
def get_dashboard_store() -> DashboardConfigStore:
    return DashboardConfigStore(get_client_manager(), get_settings())


@lru_cache(maxsize=1)
def get_overview_service() -> OverviewService:
    return OverviewService(get_client_manager(), get_cluster_service(), get_argocd_service(), get_dashboard_store(), get_settings())


@lru_cache(maxsize=1)
def get_monitoring_service() -> MonitoringService:
    return MonitoringService(get_client_manager(), get_settings())


@lru_cache(maxsize=1)
def get_porch_service() -> PorchService:
    return PorchService(get_client_manager(), get_settings())


@lru_cache(maxsize=1)
def get_package_service() -> PackageService:
    return PackageService(get_client_manager(), get_settings())


@lru_cache(maxsize=1)
def get_terminal_service() -> TerminalService:
    return TerminalService(get_client_manager())


# Cloud credentials and backups
@lru_cache(maxsize=1)
def get_cloud_credential_service() -> CloudCredentialService:
    return CloudCredentialService(get_client_manager(), get_settings())


@lru_cache(maxsize=1)
def get_registry_service() -> RegistryService:
    return RegistryService(get_client_manager(), get_settings())


@lru_cache(maxsize=1)
def get_backup_service() -> BackupService:
    return BackupService(get_client_manager(), get_registry_service(), get_settings())


@lru_cache(maxsize=1)
def get_recovery_service() -> RecoveryService:
    return RecoveryService(get_client_manager(), get_backup_service(), get_aggregation_service(), get_settings())
