"""Wire and domain models.

- AdmissionReview envelope (admission.k8s.io/v1) as sent by the Kubernetes API server
- App CR (application.giantswarm.io/v1alpha1), the managed object under review

Models use snake_case attributes with camelCase aliases so they round-trip the
Kubernetes JSON unchanged. Unknown fields are preserved (`extra="allow"`) because
the CRD schema evolves independently of this controller.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_REVIEW_KIND = "AdmissionReview"
PATCH_TYPE_JSON_PATCH = "JSONPatch"

OPERATION_CREATE = "CREATE"
OPERATION_UPDATE = "UPDATE"


class K8sModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def _none_as_empty_dict(v: Any) -> Any:
    return {} if v is None else v


def _none_as_empty_list(v: Any) -> Any:
    return [] if v is None else v


# --- App CR -----------------------------------------------------------------


class ObjectMeta(K8sModel):
    name: str = ""
    generate_name: str = ""
    namespace: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    resource_version: str = ""
    deletion_timestamp: Optional[str] = None

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def _empty_maps(cls, v: Any) -> Any:
        return _none_as_empty_dict(v)


class NamespacedRef(K8sModel):
    name: str = ""
    namespace: str = ""


class AppSpecConfig(K8sModel):
    config_map: NamespacedRef = Field(default_factory=NamespacedRef)
    secret: NamespacedRef = Field(default_factory=NamespacedRef)


class ExtraConfig(K8sModel):
    kind: str = "configMap"
    name: str = ""
    namespace: str = ""
    priority: int = 0


class KubeConfigContext(K8sModel):
    name: str = ""


class AppSpecKubeConfig(K8sModel):
    in_cluster: bool = False
    context: KubeConfigContext = Field(default_factory=KubeConfigContext)
    secret: NamespacedRef = Field(default_factory=NamespacedRef)


class AppSpec(K8sModel):
    name: str = ""
    namespace: str = ""
    catalog: str = ""
    version: str = ""
    config: AppSpecConfig = Field(default_factory=AppSpecConfig)
    user_config: AppSpecConfig = Field(default_factory=AppSpecConfig)
    extra_configs: List[ExtraConfig] = Field(default_factory=list)
    kube_config: AppSpecKubeConfig = Field(default_factory=AppSpecKubeConfig)

    @field_validator("extra_configs", mode="before")
    @classmethod
    def _empty_extra_configs(cls, v: Any) -> Any:
        return _none_as_empty_list(v)


class App(K8sModel):
    api_version: str = "application.giantswarm.io/v1alpha1"
    kind: str = "App"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: AppSpec = Field(default_factory=AppSpec)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.labels


# --- AdmissionReview --------------------------------------------------------


class UserInfo(K8sModel):
    """The requesting actor. Lives only for the duration of one decision."""

    username: str = ""
    uid: str = ""
    groups: List[str] = Field(default_factory=list)

    @field_validator("groups", mode="before")
    @classmethod
    def _empty_groups(cls, v: Any) -> Any:
        return _none_as_empty_list(v)


class GroupVersionKind(K8sModel):
    group: str = ""
    version: str = ""
    kind: str = ""


class GroupVersionResource(K8sModel):
    group: str = ""
    version: str = ""
    resource: str = ""


class AdmissionRequest(K8sModel):
    uid: str
    kind: GroupVersionKind = Field(default_factory=GroupVersionKind)
    resource: GroupVersionResource = Field(default_factory=GroupVersionResource)
    namespace: str = ""
    name: str = ""
    operation: str = ""
    user_info: UserInfo = Field(default_factory=UserInfo)
    object: Optional[Dict[str, Any]] = None
    old_object: Optional[Dict[str, Any]] = None
    dry_run: Optional[bool] = None

    @property
    def is_dry_run(self) -> bool:
        return bool(self.dry_run)


class Status(K8sModel):
    message: str = ""
    code: Optional[int] = None


class AdmissionResponse(K8sModel):
    uid: str
    allowed: bool
    patch: Optional[str] = None
    patch_type: Optional[str] = None
    # Serialized as `status` on the wire (metav1.Status).
    result: Optional[Status] = Field(default=None, alias="status")


class AdmissionReview(K8sModel):
    api_version: str = ADMISSION_API_VERSION
    kind: str = ADMISSION_REVIEW_KIND
    request: Optional[AdmissionRequest] = None
    response: Optional[AdmissionResponse] = None
