from __future__ import annotations

from pydantic import Field

from karmada_dashboard.schemas.common import CamelModel


class WidgetPosition(CamelModel):
    row: int = 0
    column: int = 0
    width: int = 0
    height: int = 0


class DashboardSettings(CamelModel):
    default_view: str | None = None
    refresh_interval: int | None = None
    pinned_clusters: list[str] | None = None
    hidden_widgets: list[str] | None = None
    widget_layout: dict[str, WidgetPosition] | None = None


class ClusterPermission(CamelModel):
    cluster: str
    roles: list[str] = Field(default_factory=list)


class UserSetting(CamelModel):
    username: str = ""
    display_name: str | None = None
    theme: str | None = None
    language: str | None = None
    date_format: str | None = None
    time_format: str | None = None
    preferences: dict[str, str] = Field(default_factory=dict)
    dashboard: DashboardSettings | None = None

    @classmethod
    def defaults(cls, username: str) -> "UserSetting":
        return cls(
            username=username,
            theme="light",
            language="en",
            date_format="MM/DD/YYYY",
            time_format="12h",
            preferences={},
            dashboard=DashboardSettings(default_view="clusters", refresh_interval=30),
        )


class UserSettingRequest(UserSetting):
    """Create/update body: may carry a password and cluster permissions that are never stored with the settings."""

    password: str | None = None
    cluster_permissions: list[ClusterPermission] = Field(default_factory=list)

    def stored(self) -> UserSetting:
        prefs = {k: v for k, v in self.preferences.items() if k != "password"}
        return UserSetting.model_validate(self.model_dump(include=set(UserSetting.model_fields)) | {"preferences": prefs})
