"""Representation of the inventory resources.

A `Kyma` is the composite resource that lists the components that should be
installed. Each entry is materialized as a `HelmComponent` owned by the `Kyma`
and named after both of them.

Resources may be parsed from Kubernetes style YAML documents and serialized
back to the same shape, e.g.:

```yaml
apiVersion: inventory.kyma-project.io/v1alpha1
kind: Kyma
metadata:
  name: kyma-sample
  namespace: kyma-system
spec:
  components:
  - name: istio
  - name: serverless
```
"""

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from pathlib import Path
import re
from typing import Any, ClassVar, TypeVar
import uuid

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import ConstructionError, InputException

__all__ = [
    "NamedResource",
    "OwnerReference",
    "ObjectMeta",
    "Kyma",
    "HelmComponent",
    "parse_raw_obj",
    "read_manifests",
]

_LOGGER = logging.getLogger(__name__)


API_GROUP = "inventory.kyma-project.io"
API_VERSION = f"{API_GROUP}/v1alpha1"
KYMA_KIND = "Kyma"
HELM_COMPONENT_KIND = "HelmComponent"
DEFAULT_NAMESPACE = "default"
YAML_SUFFIXES = (".yaml", ".yml")
# RFC 1123 subdomain, the format of object names
NAME_PATTERN = re.compile(
    r"[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*"
)
MAX_NAME_LENGTH = 253


class KymaState(StrEnum):
    """Aggregated status of a Kyma."""

    UNSET = ""
    RECONCILING = "reconciling"
    SUCCESS = "success"


class ComponentState(StrEnum):
    """Lifecycle status of a HelmComponent."""

    UNSET = ""
    PENDING = "pending"
    STARTED = "started"
    FAILING = "failing"
    RETRYING = "retrying"
    SUCCESS = "success"


def _check_version(doc: dict[str, Any], kind: str) -> None:
    """Assert that the resource has the expected group and kind."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    # Only the group is checked for forward compatibility on upgrade.
    if not api_version.startswith(API_GROUP):
        raise InputException(f"Invalid object expected '{API_GROUP}': {doc}")
    if doc.get("kind") != kind:
        raise InputException(f"Invalid object expected kind '{kind}': {doc}")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class OwnerReference(BaseManifest):
    """A back reference from an object to the object that owns it."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    """The apiVersion of the owner."""

    kind: str
    """The kind of the owner."""

    name: str
    """The name of the owner, in the same namespace as the owned object."""

    uid: str = ""
    """The uid of the owner."""

    controller: bool = False
    """True if the owner is the managing controller of the object."""


@dataclass
class ObjectMeta(BaseManifest):
    """Metadata common to all resources."""

    name: str
    """The name of the object."""

    namespace: str = DEFAULT_NAMESPACE
    """The namespace of the object."""

    uid: str = ""
    """Unique id assigned by the store on creation."""

    resource_version: int = field(
        default=0, metadata=field_options(alias="resourceVersion")
    )
    """Version assigned by the store on every write, used for optimistic concurrency."""

    generation: int = 0
    """Incremented by the store each time the spec changes."""

    owner_references: list[OwnerReference] = field(
        default_factory=list, metadata=field_options(alias="ownerReferences")
    )
    """Objects that own this object."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ObjectMeta":
        """Parse the metadata of a kubernetes resource object."""
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid object missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        return ObjectMeta(
            name=name,
            namespace=metadata.get("namespace", DEFAULT_NAMESPACE),
            uid=metadata.get("uid", ""),
            resource_version=int(metadata.get("resourceVersion", 0)),
            generation=int(metadata.get("generation", 0)),
            owner_references=[
                OwnerReference.from_dict(ref)
                for ref in metadata.get("ownerReferences") or ()
            ],
        )


@dataclass
class Resource(BaseManifest):
    """Base class for resources with metadata."""

    kind: ClassVar[str]
    api_version: ClassVar[str] = API_VERSION

    metadata: ObjectMeta
    """Standard object metadata."""

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def resource_id(self) -> NamedResource:
        """Return the identifier used to key this resource in the store."""
        return NamedResource(self.kind, self.metadata.namespace, self.metadata.name)

    def to_doc(self) -> dict[str, Any]:
        """Return the kubernetes resource object for this resource."""
        return {"apiVersion": self.api_version, "kind": self.kind, **self.to_dict()}

    def yaml(self) -> str:
        """Return a YAML string representation of the resource object."""
        return yaml.safe_dump(self.to_doc(), sort_keys=False, explicit_start=True)


@dataclass
class ComponentSpec(BaseManifest):
    """A component that should be installed for a Kyma."""

    name: str
    """The name of the component, unique within the Kyma."""

    namespace: str | None = None
    """The namespace the component installs into, informational only."""


@dataclass
class KymaSpec(BaseManifest):
    """Desired state of a Kyma."""

    components: list[ComponentSpec] = field(default_factory=list)
    """The ordered list of components to install."""


@dataclass
class KymaStatus(BaseManifest):
    """Observed state of a Kyma."""

    status: str = KymaState.UNSET.value
    """The aggregated status of all components."""

    waiting_for: list[str] = field(
        default_factory=list, metadata=field_options(alias="waitingFor")
    )
    """Names of the components that have not reached success."""


@dataclass
class Kyma(Resource):
    """A representation of a Kyma composite resource."""

    kind: ClassVar[str] = KYMA_KIND

    spec: KymaSpec = field(default_factory=KymaSpec)
    """Desired state of the Kyma."""

    status: KymaStatus = field(default_factory=KymaStatus)
    """Observed state of the Kyma."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Kyma":
        """Parse a Kyma from a kubernetes resource object."""
        _check_version(doc, KYMA_KIND)
        metadata = ObjectMeta.parse_doc(doc)
        spec = doc.get("spec") or {}
        components: list[ComponentSpec] = []
        names_seen: set[str] = set()
        for component in spec.get("components") or ():
            if not isinstance(component, dict) or not (name := component.get("name")):
                raise InputException(
                    f"Invalid {cls.__name__} {metadata.name} component missing name: {component}"
                )
            if name in names_seen:
                raise InputException(
                    f"Invalid {cls.__name__} {metadata.name} duplicate component '{name}'"
                )
            names_seen.add(name)
            components.append(
                ComponentSpec(name=name, namespace=component.get("namespace"))
            )
        status = doc.get("status") or {}
        return Kyma(
            metadata=metadata,
            spec=KymaSpec(components=components),
            status=KymaStatus(
                status=str(status.get("status", "")),
                waiting_for=list(status.get("waitingFor") or ()),
            ),
        )

    @property
    def component_names(self) -> list[str]:
        """Return the names of the components in spec order."""
        return [component.name for component in self.spec.components]


@dataclass
class HelmComponentSpec(BaseManifest):
    """Desired state of a HelmComponent."""

    component_name: str = field(metadata=field_options(alias="componentName"))
    """The logical component this object represents, immutable after creation."""


@dataclass
class HelmComponentStatus(BaseManifest):
    """Observed state of a HelmComponent."""

    status: str = ComponentState.UNSET.value
    """The lifecycle state of the component."""


@dataclass
class HelmComponent(Resource):
    """A representation of a single component of a Kyma."""

    kind: ClassVar[str] = HELM_COMPONENT_KIND

    spec: HelmComponentSpec = field(
        default_factory=lambda: HelmComponentSpec(component_name="")
    )
    """Desired state of the HelmComponent."""

    status: HelmComponentStatus = field(default_factory=HelmComponentStatus)
    """Observed state of the HelmComponent."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "HelmComponent":
        """Parse a HelmComponent from a kubernetes resource object."""
        _check_version(doc, HELM_COMPONENT_KIND)
        metadata = ObjectMeta.parse_doc(doc)
        if not (spec := doc.get("spec")):
            raise InputException(f"Invalid {cls.__name__} missing spec: {doc}")
        if not (component_name := spec.get("componentName")):
            raise InputException(
                f"Invalid {cls.__name__} missing spec.componentName: {doc}"
            )
        status = doc.get("status") or {}
        return HelmComponent(
            metadata=metadata,
            spec=HelmComponentSpec(component_name=component_name),
            status=HelmComponentStatus(status=str(status.get("status", ""))),
        )


def component_name_for(kyma_name: str, component_name: str) -> str:
    """Return the deterministic name of the HelmComponent for a Kyma component."""
    return f"{kyma_name}-{component_name}"


def is_valid_name(name: str) -> bool:
    """Return True if the name is usable as an object name."""
    return len(name) <= MAX_NAME_LENGTH and NAME_PATTERN.fullmatch(name) is not None


def controller_of(obj: Resource) -> OwnerReference | None:
    """Return the owner reference of the managing controller, if any."""
    for ref in obj.metadata.owner_references:
        if ref.controller:
            return ref
    return None


def set_controller_reference(owner: Resource, obj: Resource) -> None:
    """Record the owner as the managing controller of the object.

    Raises a ConstructionError when the relation can't be established.
    """
    if not owner.metadata.uid:
        raise ConstructionError(
            f"Owner {owner.resource_id} has no uid, it must be persisted first"
        )
    if owner.namespace != obj.namespace:
        raise ConstructionError(
            f"Cross-namespace owner references are not allowed: {owner.resource_id} "
            f"cannot own {obj.resource_id}"
        )
    ref = OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.metadata.uid,
        controller=True,
    )
    if (existing := controller_of(obj)) is not None:
        if (existing.kind, existing.name, existing.uid) != (ref.kind, ref.name, ref.uid):
            raise ConstructionError(
                f"Object {obj.resource_id} is already owned by {existing.kind} "
                f"{existing.name}"
            )
        return
    obj.metadata.owner_references.append(ref)


def new_uid() -> str:
    """Return a new unique object id."""
    return str(uuid.uuid4())


T = TypeVar("T", bound=Resource)

RESOURCE_TYPES: dict[str, type[Resource]] = {
    KYMA_KIND: Kyma,
    HELM_COMPONENT_KIND: HelmComponent,
}


def parse_raw_obj(obj: dict[str, Any]) -> Resource:
    """Parse a raw kubernetes object into a Resource."""
    if not (kind := obj.get("kind")):
        raise InputException(f"Invalid object missing kind: {obj}")
    if kind == KYMA_KIND:
        return Kyma.parse_doc(obj)
    if kind == HELM_COMPONENT_KIND:
        return HelmComponent.parse_doc(obj)
    raise InputException(f"Unsupported object kind '{kind}': {obj}")


def is_inventory_object(obj: Any) -> bool:
    """Check if the raw object is a resource of the inventory API group."""
    return (
        isinstance(obj, dict)
        and obj.get("kind") in RESOURCE_TYPES
        and str(obj.get("apiVersion", "")).startswith(API_GROUP)
    )


async def read_manifests(path: Path) -> list[Resource]:
    """Read all inventory resources from a YAML file or a directory of files.

    Documents of other kinds are skipped.
    """
    if path.is_dir():
        files = sorted(p for p in path.rglob("*") if p.suffix in YAML_SUFFIXES)
    elif path.exists():
        files = [path]
    else:
        raise InputException(f"Manifest path '{path}' does not exist")

    resources: list[Resource] = []
    for file in files:
        async with aiofiles.open(str(file)) as manifest_file:
            content = await manifest_file.read()
        try:
            docs = list(yaml.load_all(content, Loader=yaml.SafeLoader))
        except yaml.YAMLError as err:
            raise InputException(f"Unable to parse YAML file {file}: {err}") from err
        for doc in docs:
            if not is_inventory_object(doc):
                _LOGGER.debug("Skipping document in %s: %s", file, doc)
                continue
            resources.append(parse_raw_obj(doc))
    _LOGGER.debug("Read %d resources from %s", len(resources), path)
    return resources
